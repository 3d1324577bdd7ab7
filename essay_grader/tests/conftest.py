import os
import sys

# Ensure project root is on sys.path for test imports
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# Avoid cross-test contamination: Settings are cached via lru_cache and depend on env vars.
import pytest  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_settings_cache(monkeypatch: pytest.MonkeyPatch) -> None:
    from essay_grader.utils.settings import get_settings

    monkeypatch.setenv("LOG_TO_FILE", "0")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


SAMPLE_RESULT = {
    "totalScore": 78,
    "rankPercentile": 72,
    "dimensions": [
        {"subject": "要点全面性", "score": 30, "fullMark": 40},
        {"subject": "语言精炼度", "score": 24, "fullMark": 30},
        {"subject": "逻辑结构", "score": 16, "fullMark": 20},
        {"subject": "格式规范", "score": 8, "fullMark": 10},
    ],
    "comments": [
        {"title": "要点抓取较准", "content": "覆盖了主要问题与对策。", "type": "positive"},
        {"title": "表述偏冗长", "content": "多处口语化重复。", "type": "negative"},
    ],
    "advice": "先列要点清单，再压缩表述。",
    "annotations": [{"originalText": "我觉得基层干部很辛苦", "comment": "口语化，改为“基层负担重”"}],
    "pointChecklist": [
        {"materialPoint": f"要点{i}", "covered": i % 3 != 0, "reason": "已提及" if i % 3 else "遗漏"}
        for i in range(1, 9)
    ],
    "reportMarkdown": "## 批改报告\n\n总分 78 分。",
}


@pytest.fixture
def sample_result() -> dict:
    import copy

    return copy.deepcopy(SAMPLE_RESULT)
