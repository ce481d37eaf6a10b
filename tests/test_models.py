"""Tests for API record models."""

from erlc.models import JoinLog, Player, ServerStatus, Vehicle, split_player


class TestModels:
    """Tests for wire-format validation."""

    def test_player_from_wire(self):
        player = Player.model_validate(
            {"Player": "Alice:123", "Permission": "Server Owner", "Callsign": "A-1", "Team": "Police"}
        )

        assert player.name == "Alice"
        assert player.user_id == "123"
        assert player.permission == "Server Owner"
        assert player.model_dump(by_alias=True)["Callsign"] == "A-1"

    def test_server_status_from_wire(self):
        status = ServerStatus.model_validate(
            {"Name": "Test RP", "OwnerId": 1, "CoOwnerIds": [2, 3], "CurrentPlayers": 4, "MaxPlayers": 40}
        )
        assert status.co_owner_ids == [2, 3]
        assert status.max_players == 40

    def test_unknown_fields_are_kept(self):
        log = JoinLog.model_validate({"Join": True, "Player": "A:1", "Timestamp": 5, "Extra": "x"})
        assert log.model_extra == {"Extra": "x"}

    def test_parse_list(self):
        vehicles = Vehicle.parse_list([{"Name": "Falcon", "Owner": "Alice"}])
        assert vehicles[0].key == "Alice:Falcon"
        assert Vehicle.parse_list(None) == []
        assert Vehicle.parse_list({"Name": "Falcon"}) == []

    def test_split_player(self):
        assert split_player("Alice:1") == ("Alice", "1")
        assert split_player("Alice") == ("Alice", None)
        assert split_player("") == ("", None)
