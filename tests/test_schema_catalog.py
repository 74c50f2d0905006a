from pos_analyst.safety import ALLOWLISTED_TABLES, harden
from pos_analyst.schema_catalog import SCHEMA_CATALOG


def test_catalog_matches_allowlist():
    assert set(SCHEMA_CATALOG.tables) == ALLOWLISTED_TABLES


def test_foreign_keys_stay_inside_the_catalog():
    for fk in SCHEMA_CATALOG.foreign_keys:
        assert fk.child_table in SCHEMA_CATALOG.tables
        assert fk.parent_table in SCHEMA_CATALOG.tables
        child_cols = {c.name for c in SCHEMA_CATALOG.tables[fk.child_table].columns}
        assert fk.child_column in child_cols


def test_prompt_text_lists_every_table():
    text = SCHEMA_CATALOG.to_text()
    assert text.startswith("Tables:\n")
    for name in ALLOWLISTED_TABLES:
        assert f"{name}:" in text
    assert "Key relationships:" in text


def test_every_catalog_table_passes_hardening():
    for name in SCHEMA_CATALOG.tables:
        assert harden(f"SELECT * FROM {name}").endswith("LIMIT 100")
