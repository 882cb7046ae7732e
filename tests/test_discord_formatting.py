import unittest

from domain.models import KitStanding, PlayerSummary
from interfaces.discord.formatting import (
    chunk_lines,
    format_leaderboard,
    format_profile,
    format_uptime,
    skin_head_url,
)


class FormattingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.alice = PlayerSummary(
            username="Alice",
            total_points=1500,
            kits=[KitStanding("Sword", "HT1", 1000), KitStanding("Axe", "LT2", 500)],
        )

    def test_skin_head_url_escapes_name(self):
        self.assertEqual(
            skin_head_url("a b/c"),
            "https://crafatar.com/avatars/a%20b%2Fc?size=128&overlay",
        )

    def test_format_uptime(self):
        self.assertEqual(format_uptime(0), "0d 0h 0m 0s")
        self.assertEqual(format_uptime(90061.7), "1d 1h 1m 1s")
        self.assertEqual(format_uptime(-3), "0d 0h 0m 0s")

    def test_format_leaderboard(self):
        lines = format_leaderboard([self.alice, PlayerSummary("Bob", 10, [KitStanding("UHC", "LT5", 10)])])
        self.assertEqual(
            lines,
            [
                "1. **Alice** - 1500 pts (Sword HT1, Axe LT2)",
                "2. **Bob** - 10 pts (UHC LT5)",
            ],
        )

    def test_format_profile(self):
        self.assertEqual(
            format_profile(self.alice),
            ["**Sword**: HT1 (1000 pts)", "**Axe**: LT2 (500 pts)", "Total: 1500 pts"],
        )

    def test_chunk_lines_respects_limit(self):
        chunks = chunk_lines(["a" * 6, "b" * 6, "c" * 6], limit=13)
        self.assertEqual(chunks, ["aaaaaa\nbbbbbb", "cccccc"])
        self.assertTrue(all(len(chunk) <= 13 for chunk in chunks))

    def test_chunk_lines_empty(self):
        self.assertEqual(chunk_lines([]), [])


if __name__ == "__main__":
    unittest.main()
