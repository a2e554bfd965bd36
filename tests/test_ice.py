"""Tests for the ICE configuration snapshot."""

from sfu_signaling.rtc.ice import IceConfig, IceServer
from sfu_signaling.signaling.schemas import IceServerModel, SignalingConfigModel


def test_from_signaling_copies_servers_and_policy() -> None:
    model = SignalingConfigModel.model_validate(
        {
            "iceServers": [
                {"urls": "stun:stun.example.com"},
                {"urls": ["turn:turn.example.com:3478", "turns:turn.example.com:5349"], "username": "u", "credential": "p"},
                {"urls": []},
            ],
            "iceTransportPolicy": "relay",
        }
    )
    config = IceConfig.from_signaling(model)
    assert len(config.servers) == 2
    assert config.relay_only is True
    assert config.describe()["iceTransportPolicy"] == "relay"


def test_relay_policy_keeps_only_turn_servers() -> None:
    stun = IceServer(urls=["stun:stun.example.com"])
    turn = IceServer(urls=["turn:turn.example.com"], username="u", credential="p")
    assert list(IceConfig(servers=[stun, turn], transport_policy="relay").iter_servers()) == [turn]
    assert list(IceConfig(servers=[stun, turn]).iter_servers()) == [stun, turn]


def test_null_ice_servers_mean_none() -> None:
    config = IceConfig.from_signaling(SignalingConfigModel.model_validate({"iceServers": None}))
    assert config.servers == []
    assert config.relay_only is False


def test_ice_models_use_field_validators() -> None:
    for model, name in ((IceServerModel, "_coerce_urls"), (SignalingConfigModel, "_none_as_empty")):
        decorators = model.__pydantic_decorators__
        assert name in decorators.field_validators
        assert decorators.validators == {}
    assert IceServerModel.model_validate({"urls": "stun:stun.example.com"}).urls == ["stun:stun.example.com"]
