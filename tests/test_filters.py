# tests/test_filters.py
import pytest

from modules.auto_responder.lib.config import FilterConfig
from modules.auto_responder.lib.filters import SalaryRange, evaluate, parse_salary
from modules.auto_responder.lib.models import Entry
from modules.auto_responder.lib.utils import as_str_set


def _entry(**kw):
    base = {"id": "1", "title": "Python developer", "company": "Acme", "salary_text": "", "description_snippet": ""}
    base.update(kw)
    return Entry(**base)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("от 100 000 ₽", SalaryRange(100000, None)),
        ("до 150 000 руб.", SalaryRange(None, 150000)),
        ("100 000 – 150 000 ₽", SalaryRange(100000, 150000)),
        ("from $3,000", SalaryRange(3000, None)),
        ("up to 5000 USD", SalaryRange(None, 5000)),
        ("120000", SalaryRange(120000, 120000)),
        ("3,000руб", SalaryRange(3000, 3000)),
    ],
)
def test_parse_salary_shapes(text, expected):
    assert parse_salary(text) == expected


@pytest.mark.parametrize("text", ["", "   ", None, "по договоренности", "competitive"])
def test_parse_salary_unparseable_is_none(text):
    assert parse_salary(text) is None


def test_all_failing_checks_are_reported():
    cfg = FilterConfig(
        min_salary=200_000,
        blacklisted_companies=as_str_set(["acme"]),
        required_keywords=as_str_set(["golang"]),
    )
    decision = evaluate(_entry(company="ACME Corp", salary_text="до 100 000 ₽"), cfg)

    assert decision.accept is False
    assert set(decision.reasons) == {"salary-below-min", "company-blacklisted:acme", "missing-required-keyword"}


def test_directly_built_config_matches_case_insensitively():
    cfg = FilterConfig(blacklisted_companies={"Acme"}, required_keywords={"Python"}, excluded_keywords=["PHP"])
    assert cfg.blacklisted_companies == frozenset({"acme"})

    decision = evaluate(_entry(title="Senior Python dev", company="ACME Corp"), cfg)
    assert decision.reasons == ("company-blacklisted:acme",)
    assert evaluate(_entry(title="Python / php", company="Globex"), cfg).reasons == ("excluded-keyword:php",)


def test_missing_salary_rejected_only_when_configured():
    assert evaluate(_entry(), FilterConfig(skip_if_no_salary=True)).reasons == ("salary-missing",)
    assert evaluate(_entry(), FilterConfig(min_salary=100_000)).accept is True


def test_unparseable_salary_never_rejects():
    cfg = FilterConfig(min_salary=100_000, max_salary=200_000, skip_if_no_salary=True)
    assert evaluate(_entry(salary_text="по договоренности"), cfg).accept is True


def test_salary_bounds_use_best_and_lowest_available():
    cfg = FilterConfig(min_salary=120_000, max_salary=250_000)
    # upper end reaches the minimum -> fine
    assert evaluate(_entry(salary_text="100 000 – 150 000 ₽"), cfg).accept is True
    # "from 300k" starts above the maximum
    assert evaluate(_entry(salary_text="от 300 000 ₽"), cfg).reasons == ("salary-above-max",)


def test_keywords_are_case_insensitive_and_cover_snippet():
    cfg = FilterConfig(
        required_keywords=as_str_set("django, fastapi"),
        excluded_keywords=as_str_set(["1C", "bitrix"]),
    )
    ok = _entry(title="Backend", description_snippet="We use FastAPI and Postgres")
    assert evaluate(ok, cfg).accept is True

    bad = _entry(title="Python/1C разработчик", description_snippet="Django, Bitrix")
    assert evaluate(bad, cfg).reasons == ("excluded-keyword:1c", "excluded-keyword:bitrix")


def test_evaluate_is_pure():
    cfg = FilterConfig(min_salary=500_000)
    e = _entry(salary_text="100 000")
    first = evaluate(e, cfg)
    second = evaluate(e, cfg)
    assert first == second
    assert e.salary_text == "100 000"
