"""
Tests for summer week generation and the weekly availability grid.
"""

from datetime import date

from services.planner_aggregates import (
    generate_summer_weeks,
    get_weekly_availability,
    recompute_all,
    recompute_for_city,
)


class TestSummerWeeks:
    def test_weeks_2026(self):
        weeks = generate_summer_weeks(2026)
        assert weeks[0]["start_date"] == date(2026, 6, 8)
        assert weeks[0]["label"] == "Jun 8-12"
        assert weeks[-1]["end_date"] == date(2026, 8, 28)
        assert len(weeks) == 12

    def test_first_monday_after_june_8(self):
        # June 8, 2025 is a Sunday
        assert generate_summer_weeks(2025)[0]["start_date"] == date(2025, 6, 9)


class TestRecompute:
    def test_buckets_merge_identical_sessions(self, make):
        city = make.city()
        org = make.organization(city, name="Parks Dept")
        camp = make.camp(org, categories=["sports"])
        for _ in range(2):
            make.session(camp, start_date=date(2026, 7, 6), organization_name="Parks Dept", min_age=6, max_age=9)
        make.session(camp, start_date=date(2026, 7, 6), min_age=10, max_age=12)

        row = recompute_for_city(city.id, 2026)

        week = row.counts["2026-07-06"]
        merged = next(b for b in week if b.get("n") == 2)
        assert merged["org_name"] == "Parks Dept"
        assert merged["cats"] == ["sports"]
        single = next(b for b in week if b["min_age"] == 10)
        assert "n" not in single

    def test_full_and_inactive_sessions_excluded(self, make):
        city = make.city()
        camp = make.camp(make.organization(city))
        make.session(camp, capacity=10, enrolled_count=10, status="sold_out")
        make.session(camp, status="draft")

        row = recompute_for_city(city.id, 2026)
        assert row.counts == {}

    def test_multi_week_session_counts_in_each_week(self, make):
        city = make.city()
        camp = make.camp(make.organization(city))
        make.session(camp, start_date=date(2026, 7, 6), end_date=date(2026, 7, 17))

        counts = recompute_for_city(city.id, 2026).counts
        assert set(counts) == {"2026-07-06", "2026-07-13"}

    def test_recompute_all_adds_next_year_in_autumn(self, make):
        city = make.city()
        assert recompute_all(today=date(2026, 10, 1)) == {"cities": 1, "years": 2}
        assert get_weekly_availability(city.id, 2027) is not None
        assert recompute_all(today=date(2026, 3, 1))["years"] == 1
