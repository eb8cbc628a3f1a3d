import json
import logging
from pathlib import Path

import pytest

from engines.topic_catalog import TopicCatalog, TopicCatalogError, default_catalog
from engines.topic_selector import TopicSelector


def _write(tmp_path: Path, data) -> Path:
    path = tmp_path / "topics.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_bundled_catalog_covers_three_subjects():
    catalog = TopicCatalog()

    assert catalog.subjects() == ("Math", "Reading", "Writing")
    assert len(catalog.topics("Math")) == 39
    assert len(catalog.topics("Reading")) == 12
    assert len(catalog.topics("Writing")) == 15
    assert catalog.foundational("Math").name == "Linear Equations"


def test_bundled_catalog_is_sorted_by_priority():
    catalog = TopicCatalog()

    for subject in catalog.subjects():
        priorities = [t.priority for t in catalog.topics(subject)]
        assert priorities == sorted(priorities)
        assert priorities[0] == 1


def test_lookup_is_case_insensitive():
    catalog = TopicCatalog()

    rates = catalog.get("math", "RATES")

    assert rates.name == "Rates"
    assert rates.prerequisites == ("Ratios and Proportions",)
    assert catalog.get("Math", "Calculus") is None


def test_unknown_subject_falls_back_with_warning(caplog):
    caplog.set_level(logging.WARNING, logger="engines.topic_catalog")

    assert TopicCatalog().resolve_subject("Chemistry") == "Math"
    assert "Chemistry" in caplog.text


def test_custom_catalog_sorts_topics(tmp_path: Path):
    path = _write(
        tmp_path,
        {
            "Science": [
                {"topic": "Energy", "description": "Work and power", "priority": 2, "prerequisites": ["Motion"]},
                {"topic": "Motion", "description": "Speed and velocity", "priority": 1},
            ]
        },
    )

    catalog = TopicCatalog(path)

    assert [t.name for t in catalog.topics("science")] == ["Motion", "Energy"]
    assert catalog.topics("Science")[0].prerequisites == ()
    assert catalog.resolve_subject("anything") == "Science"


@pytest.mark.parametrize(
    "data",
    [
        [],
        {},
        {"Math": []},
        {"Math": [{"topic": "", "priority": 1}]},
        {"Math": [{"topic": "A", "priority": 0}]},
        {"Math": [{"topic": "A", "priority": True}]},
        {"Math": [{"topic": "A", "priority": 1}, {"topic": "a", "priority": 2}]},
        {"Math": [{"topic": "A", "priority": 1}, {"topic": "B", "priority": 1}]},
        {"Math": [{"topic": "A", "priority": 1, "prerequisites": "B"}]},
        {"Math": [{"topic": "A", "priority": 1, "prerequisites": ["Missing"]}]},
    ],
)
def test_invalid_catalogs_are_rejected(tmp_path: Path, data):
    with pytest.raises(TopicCatalogError):
        TopicCatalog(_write(tmp_path, data))


def test_missing_catalog_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        TopicCatalog(tmp_path / "absent.json")


def test_default_catalog_is_loaded_once():
    assert default_catalog() is default_catalog()
    assert TopicSelector().catalog is default_catalog()
    assert default_catalog().topics("Math")[0].name == "Linear Equations"
