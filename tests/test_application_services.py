import unittest

from application.services import (
    MAX_POINTS,
    ExternalContext,
    get_leaderboard,
    get_profile,
    link_account,
    search_player,
    seed_disciplines,
    unlink_account,
    update_tier,
    whois,
)
from domain.errors import (
    ConflictError,
    DisciplineNotFoundError,
    DuplicateLinkError,
    InvalidQueryError,
    NotLinkedError,
    PlayerNotFoundError,
)
from domain.models import Discipline, LedgerRow, Link, Player, TierRecord
from domain.repositories import LedgerRepository, LinkRepository


class InMemoryLinkRepository(LinkRepository):
    def __init__(self):
        self.links = {}

    def create_link(self, game_account_name: str, identity_id: str) -> Link:
        for name, existing_id in self.links.items():
            if existing_id == identity_id:
                raise DuplicateLinkError(game_account_name, identity_id, existing_name=name)
        if game_account_name in self.links:
            raise DuplicateLinkError(
                game_account_name,
                identity_id,
                existing_identity=self.links[game_account_name],
            )
        self.links[game_account_name] = identity_id
        return Link(game_account_name, identity_id)

    def remove_link(self, identity_id: str) -> str:
        for name, existing_id in list(self.links.items()):
            if existing_id == identity_id:
                del self.links[name]
                return name
        raise NotLinkedError(identity_id=identity_id)

    def find_by_name(self, game_account_name: str):
        return self.links.get(game_account_name)

    def find_by_identity(self, identity_id: str):
        for name, existing_id in self.links.items():
            if existing_id == identity_id:
                return name
        return None


class InMemoryLedgerRepository(LedgerRepository):
    def __init__(self):
        self.players = {}
        self.disciplines = {}
        self.records = []
        # Extra rows appended to every read, to mimic join fan-out.
        self.fanout_rows = []
        self.conflicts_to_raise = 0
        self.upsert_calls = 0

    def add_discipline(self, name: str) -> Discipline:
        if name not in self.disciplines:
            self.disciplines[name] = Discipline(id=len(self.disciplines) + 1, name=name)
        return self.disciplines[name]

    def list_disciplines(self):
        return list(self.disciplines.values())

    def get_player(self, username: str):
        return self.players.get(username)

    def find_username(self, query: str):
        for username in self.players:
            if username.lower() == query.lower():
                return username
        return None

    def upsert_tier(self, username, discipline_name, tier_code, points) -> TierRecord:
        self.upsert_calls += 1
        if self.conflicts_to_raise:
            self.conflicts_to_raise -= 1
            raise ConflictError("busy")

        player = self.players.get(username)
        if player is None:
            player = Player(id=len(self.players) + 1, username=username)
            self.players[username] = player

        discipline = self.disciplines.get(discipline_name)
        if discipline is None:
            raise DisciplineNotFoundError(discipline_name)

        for record in self.records:
            if record.player_id == player.id and record.discipline_id == discipline.id:
                record.tier_code = tier_code
                record.points = points
                return record

        record = TierRecord(
            id=len(self.records) + 1,
            player_id=player.id,
            discipline_id=discipline.id,
            tier_code=tier_code,
            points=points,
        )
        self.records.append(record)
        return record

    def fetch_ledger_rows(self):
        usernames = {p.id: p.username for p in self.players.values()}
        kit_names = {d.id: d.name for d in self.disciplines.values()}
        rows = [
            LedgerRow(usernames[r.player_id], kit_names[r.discipline_id], r.tier_code, r.points)
            for r in self.records
        ]
        rows.sort(key=lambda row: row.points, reverse=True)
        return rows + list(self.fanout_rows)

    def get_player_ledger(self, username: str):
        rows = [row for row in self.fetch_ledger_rows() if row.username == username]
        if not rows:
            raise PlayerNotFoundError(username)
        return rows


class LinkServicesTests(unittest.TestCase):
    def setUp(self) -> None:
        self.link_repo = InMemoryLinkRepository()
        self.ctx = ExternalContext(
            provider="discord",
            provider_user_id="id123",
            display_name="Steve#0001",
        )

    def test_link_account_creates_link(self):
        link = link_account(self.ctx, "Steve", self.link_repo)
        self.assertEqual(link, Link("Steve", "id123"))
        self.assertEqual(self.link_repo.find_by_name("Steve"), "id123")

    def test_link_account_logs_display_name(self):
        with self.assertLogs("application.services", level="INFO") as logs:
            link_account(self.ctx, "Steve", self.link_repo)
        self.assertIn("Steve#0001", logs.output[0])

    def test_link_account_strips_whitespace(self):
        link_account(self.ctx, "  Steve ", self.link_repo)
        self.assertEqual(self.link_repo.find_by_identity("id123"), "Steve")

    def test_link_account_rejects_empty_name(self):
        with self.assertRaises(InvalidQueryError):
            link_account(self.ctx, "   ", self.link_repo)

    def test_second_link_for_same_identity_is_rejected(self):
        link_account(self.ctx, "Steve", self.link_repo)
        with self.assertRaises(DuplicateLinkError) as cm:
            link_account(self.ctx, "Alex", self.link_repo)
        self.assertEqual(cm.exception.existing_name, "Steve")

    def test_unlink_returns_previous_name(self):
        link_account(self.ctx, "Steve", self.link_repo)
        self.assertEqual(unlink_account(self.ctx, self.link_repo), "Steve")
        with self.assertRaises(NotLinkedError):
            unlink_account(self.ctx, self.link_repo)

    def test_whois_forward_and_reverse(self):
        link_account(self.ctx, "Steve", self.link_repo)

        by_name = whois(self.link_repo, game_account_name="Steve")
        by_identity = whois(self.link_repo, identity_id="id123")

        self.assertEqual((by_name.game_account_name, by_name.identity_id), ("Steve", "id123"))
        self.assertEqual((by_identity.game_account_name, by_identity.identity_id), ("Steve", "id123"))

    def test_whois_prefers_name_when_both_given(self):
        link_account(self.ctx, "Steve", self.link_repo)
        self.link_repo.create_link("Alex", "id999")

        result = whois(self.link_repo, identity_id="id999", game_account_name="Steve")
        self.assertEqual(result.game_account_name, "Steve")
        self.assertEqual(result.identity_id, "id123")

    def test_whois_without_arguments_is_invalid(self):
        with self.assertRaises(InvalidQueryError):
            whois(self.link_repo)

    def test_whois_unknown_name_is_not_linked(self):
        with self.assertRaises(NotLinkedError) as cm:
            whois(self.link_repo, game_account_name="Nobody")
        self.assertIn("Nobody", cm.exception.message)


class LedgerServicesTests(unittest.TestCase):
    def setUp(self) -> None:
        self.ledger_repo = InMemoryLedgerRepository()
        seed_disciplines(["Sword", "Axe", "UHC"], self.ledger_repo)

    def test_update_tier_is_idempotent(self):
        update_tier("Alice", "Sword", "HT1", 1000, self.ledger_repo)
        update_tier("Alice", "Sword", "HT1", 1000, self.ledger_repo)

        self.assertEqual(len(self.ledger_repo.records), 1)
        record = self.ledger_repo.records[0]
        self.assertEqual((record.tier_code, record.points), ("HT1", 1000))

    def test_update_tier_overwrites(self):
        update_tier("Alice", "Sword", "HT1", 1000, self.ledger_repo)
        record = update_tier("Alice", "Sword", "LT2", 500, self.ledger_repo)

        self.assertEqual(len(self.ledger_repo.records), 1)
        self.assertEqual((record.tier_code, record.points), ("LT2", 500))

    def test_update_tier_rejects_negative_points(self):
        with self.assertRaises(InvalidQueryError):
            update_tier("Alice", "Sword", "HT1", -5, self.ledger_repo)
        self.assertEqual(self.ledger_repo.upsert_calls, 0)

    def test_update_tier_rejects_points_above_column_range(self):
        with self.assertRaises(InvalidQueryError):
            update_tier("Alice", "Sword", "HT1", 10**20, self.ledger_repo)
        with self.assertRaises(InvalidQueryError):
            update_tier("Alice", "Sword", "HT1", MAX_POINTS + 1, self.ledger_repo)
        self.assertEqual(self.ledger_repo.upsert_calls, 0)

        record = update_tier("Alice", "Sword", "HT1", MAX_POINTS, self.ledger_repo)
        self.assertEqual(record.points, MAX_POINTS)

    def test_update_tier_unknown_kit(self):
        with self.assertRaises(DisciplineNotFoundError):
            update_tier("Bob", "NotAKit", "T1", 10, self.ledger_repo)
        self.assertEqual(self.ledger_repo.records, [])

    def test_update_tier_retries_once_on_conflict(self):
        self.ledger_repo.conflicts_to_raise = 1
        record = update_tier("Alice", "Sword", "HT1", 1000, self.ledger_repo)
        self.assertEqual(record.points, 1000)
        self.assertEqual(self.ledger_repo.upsert_calls, 2)

    def test_update_tier_gives_up_after_second_conflict(self):
        self.ledger_repo.conflicts_to_raise = 2
        with self.assertRaises(ConflictError):
            update_tier("Alice", "Sword", "HT1", 1000, self.ledger_repo)
        self.assertEqual(self.ledger_repo.upsert_calls, 2)

    def test_leaderboard_does_not_double_count_fanout(self):
        update_tier("Alice", "Sword", "HT1", 1000, self.ledger_repo)
        self.ledger_repo.fanout_rows.append(LedgerRow("Alice", "Sword", "HT1", 1000))

        board = get_leaderboard(self.ledger_repo)
        self.assertEqual(len(board), 1)
        self.assertEqual(board[0].total_points, 1000)

    def test_leaderboard_sums_kits_and_orders(self):
        update_tier("Alice", "Sword", "HT1", 300, self.ledger_repo)
        update_tier("Bob", "Sword", "HT2", 200, self.ledger_repo)
        update_tier("Bob", "Axe", "LT1", 250, self.ledger_repo)

        board = get_leaderboard(self.ledger_repo, limit=10)
        self.assertEqual([s.username for s in board], ["Bob", "Alice"])
        self.assertEqual(board[0].total_points, 450)

    def test_profile_lists_kits_by_points(self):
        update_tier("Alice", "Sword", "HT1", 100, self.ledger_repo)
        update_tier("Alice", "UHC", "HT3", 400, self.ledger_repo)

        profile = get_profile("Alice", self.ledger_repo)
        self.assertEqual([k.name for k in profile.kits], ["UHC", "Sword"])
        self.assertEqual(profile.total_points, 500)

    def test_profile_for_unknown_player(self):
        with self.assertRaises(PlayerNotFoundError):
            get_profile("Ghost", self.ledger_repo)

    def test_search_player_ignores_case(self):
        update_tier("Alice", "Sword", "HT1", 100, self.ledger_repo)
        self.assertEqual(search_player("aLiCe", self.ledger_repo), "Alice")
        with self.assertRaises(PlayerNotFoundError):
            search_player("Bob", self.ledger_repo)

    def test_search_player_prefers_exact_match(self):
        update_tier("Alice", "Sword", "HT1", 100, self.ledger_repo)
        update_tier("alice", "Sword", "LT5", 5, self.ledger_repo)

        self.assertEqual(search_player("alice", self.ledger_repo), "alice")
        self.assertEqual(search_player("ALICE", self.ledger_repo), "Alice")


if __name__ == "__main__":
    unittest.main()
