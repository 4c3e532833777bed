import pytest

from app.services.llm import create_mock_analysis, parse_llm_json


def test_parse_llm_json_valid() -> None:
    payload = parse_llm_json('{"meal_name":"Menemen","total_calories":320}')
    assert payload["total_calories"] == 320


def test_parse_llm_json_strips_code_fences() -> None:
    payload = parse_llm_json('```json\n{"meal_name": "Mercimek Çorbası"}\n```')
    assert payload["meal_name"] == "Mercimek Çorbası"


def test_parse_llm_json_extracts_embedded_object() -> None:
    payload = parse_llm_json('Here is the analysis: {"confidence": 0.7} hope it helps')
    assert payload["confidence"] == 0.7


def test_parse_llm_json_malformed_raises() -> None:
    with pytest.raises(ValueError):
        parse_llm_json('{"meal_name":"bad",}')


def test_mock_analysis_is_localised_and_consistent() -> None:
    turkish = create_mock_analysis("tr")
    english = create_mock_analysis("en-US")
    assert turkish["items"][0]["name"] == "Tavuk Izgara"
    assert english["items"][0]["name"] == "Grilled Chicken"
    assert turkish["total_calories"] == 480
    assert sum(item["calories"] for item in turkish["items"]) == 480
    assert turkish["total_macros"] == {"p": 32, "c": 46, "f": 18}
