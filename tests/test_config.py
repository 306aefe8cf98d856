"""Tests for app.core.config DATABASE_URL handling."""

import unittest

from pydantic import ValidationError

from app.core.config import PSYCOPG2_URL_PREFIX, Settings


class TestDatabaseUrl(unittest.TestCase):
    def test_default_names_psycopg2_driver(self) -> None:
        default = Settings.model_fields["DATABASE_URL"].default
        self.assertTrue(default.startswith(PSYCOPG2_URL_PREFIX))
        self.assertTrue(Settings().DATABASE_URL.startswith(PSYCOPG2_URL_PREFIX))

    def test_bare_schemes_are_pinned_to_psycopg2(self) -> None:
        for url in (
            "postgresql://u:p@db:5432/app",
            "postgres://u:p@db:5432/app",
            "postgres+psycopg2://u:p@db:5432/app",
            "  postgresql+psycopg2://u:p@db:5432/app  ",
        ):
            with self.subTest(url=url):
                settings = Settings(DATABASE_URL=url)
                self.assertEqual(settings.DATABASE_URL, "postgresql+psycopg2://u:p@db:5432/app")

    def test_other_databases_rejected(self) -> None:
        for url in ("mysql://u:p@db/app", "postgresql+psycopg://u:p@db/app", "   "):
            with self.subTest(url=url):
                with self.assertRaises(ValidationError):
                    Settings(DATABASE_URL=url)


if __name__ == "__main__":
    unittest.main()
