"""Tests for risk flags and KPIs."""

from datetime import date, datetime, timedelta, timezone

import pytest

from common.ams_monitoring.administration import record_dose
from common.ams_monitoring.flags import (
    FILTER_NEARING_STOP,
    FILTER_NEW,
    FILTER_RED_FLAG,
    SORT_DAYS_ON_THERAPY,
    adherence_percent,
    compute_kpis,
    evaluate_flags,
    filter_patients,
    has_missed_dose,
    has_prolonged_therapy,
    has_renal_alert,
    is_nearing_completion,
    is_new,
    max_day_of_therapy,
    patient_summary,
    sort_patients,
)
from common.ams_monitoring.models import CourseStatus, PatientStatus, TherapyCourse

TODAY = date(2024, 3, 20)
NOW = datetime(2024, 3, 20, 12, 0)


def start_for_dot(dot):
    """Start date that puts TODAY on the given day of therapy."""
    return (TODAY - timedelta(days=dot - 1)).isoformat()


class TestMissedDose:

    def test_no_log(self, make_patient, make_course):
        assert not has_missed_dose(make_patient([make_course()]))

    def test_missed_entry(self, make_patient, make_course):
        course = make_course()
        record_dose(course, 2, 1, "Missed", "nurse.a", now=NOW)
        assert has_missed_dose(make_patient([course]))

    def test_missed_on_terminal_course_still_counts(self, make_patient, make_course):
        course = make_course()
        record_dose(course, 1, 0, "Missed", "nurse.a", now=NOW)
        course.status = CourseStatus.COMPLETED
        assert has_missed_dose(make_patient([course]))


class TestRenalAlert:

    def test_severe_impairment(self, make_patient):
        # 400 umol/L at 70 years gives an eGFR around 10
        patient = make_patient(age="70", sex="Female", latest_creatinine="400")
        assert patient.egfr.value < 30
        assert has_renal_alert(patient)

    def test_normal_function(self, make_patient):
        assert not has_renal_alert(make_patient(latest_creatinine="80"))

    @pytest.mark.parametrize("creatinine", ["Pending", "", "abc"])
    def test_sentinel_never_alerts(self, make_patient, creatinine):
        assert not has_renal_alert(make_patient(latest_creatinine=creatinine))


class TestProlongedTherapy:

    def test_day_14_is_not_prolonged(self, make_patient, make_course):
        patient = make_patient([make_course(start_date=start_for_dot(14), planned_duration="21")])
        assert not has_prolonged_therapy(patient, TODAY)

    def test_day_15_is_prolonged(self, make_patient, make_course):
        patient = make_patient([make_course(start_date=start_for_dot(15), planned_duration="21")])
        assert has_prolonged_therapy(patient, TODAY)

    def test_only_active_courses(self, make_patient, make_course):
        course = make_course(start_date=start_for_dot(20), status=CourseStatus.STOPPED)
        assert not has_prolonged_therapy(make_patient([course]), TODAY)


class TestNearingCompletion:

    @pytest.mark.parametrize("dot,expected", [
        (7, True),   # 0 days remaining
        (6, True),   # 1
        (5, True),   # 2
        (4, False),  # 3
        (8, False),  # -1, overrun
    ])
    def test_remaining_days_window(self, make_course, dot, expected):
        course = make_course(start_date=start_for_dot(dot), planned_duration="7")
        assert is_nearing_completion(course, TODAY) is expected

    def test_terminal_course_excluded(self, make_course):
        course = make_course(start_date=start_for_dot(7), status=CourseStatus.COMPLETED)
        assert not is_nearing_completion(course, TODAY)

    def test_unparseable_duration_excluded(self, make_course):
        course = make_course(start_date=start_for_dot(7), planned_duration="TBD")
        assert not is_nearing_completion(course, TODAY)


class TestRiskFlags:

    def test_is_flagged_any(self, make_patient, make_course):
        clean = make_patient([make_course(start_date=start_for_dot(3))])
        flags = evaluate_flags(clean, TODAY)
        assert not flags.is_flagged
        assert flags.labels() == []

        prolonged = make_patient([make_course(start_date=start_for_dot(16), planned_duration="21")])
        flags = evaluate_flags(prolonged, TODAY)
        assert flags.is_flagged
        assert flags.labels() == ["DOT > 14"]

    def test_to_dict(self, make_patient):
        data = evaluate_flags(make_patient(age="70", sex="Female", latest_creatinine="400"), TODAY).to_dict()
        assert data["has_renal_alert"] is True
        assert data["is_flagged"] is True
        assert data["labels"] == ["Renal Alert"]


class TestKPIs:

    def test_counts_admitted_only(self, make_patient, make_course):
        patients = [
            # New, nearing completion
            make_patient(
                [make_course(start_date=start_for_dot(6))],
                id="p1", created_at=(NOW - timedelta(hours=3)).isoformat(),
            ),
            # Flagged (renal), not new
            make_patient(
                [make_course(start_date=start_for_dot(2))],
                id="p2", age="70", sex="Female", latest_creatinine="400",
                created_at=(NOW - timedelta(days=3)).isoformat(),
            ),
            # Flagged (prolonged)
            make_patient(
                [make_course(start_date=start_for_dot(15), planned_duration="28")],
                id="p3", created_at=(NOW - timedelta(days=15)).isoformat(),
            ),
            # Discharged patients are excluded from every count
            make_patient(
                [make_course(start_date=start_for_dot(20))],
                id="p4", status=PatientStatus.DISCHARGED, created_at=NOW.isoformat(),
            ),
        ]

        kpis = compute_kpis(patients, NOW)

        assert kpis.active_count == 3
        assert kpis.flagged_count == 2
        assert kpis.new_count == 1
        assert kpis.nearing_completion_count == 1

    def test_new_window_is_24_hours(self, make_patient):
        assert is_new(make_patient(created_at=(NOW - timedelta(hours=23)).isoformat()), NOW)
        assert not is_new(make_patient(created_at=(NOW - timedelta(hours=25)).isoformat()), NOW)
        assert not is_new(make_patient(created_at=None), NOW)

    def test_utc_created_at(self, make_patient):
        now = datetime.now()
        utc_now = datetime.now(timezone.utc)
        recent = make_patient(created_at=(utc_now - timedelta(hours=1)).strftime("%Y-%m-%dT%H:%M:%SZ"))
        old = make_patient(created_at=(utc_now - timedelta(hours=30)).strftime("%Y-%m-%dT%H:%M:%SZ"))

        assert is_new(recent, now)
        assert not is_new(old, now)
        assert compute_kpis([recent, old], now).new_count == 1

    def test_aware_now(self, make_patient):
        patient = make_patient(created_at=datetime.now().isoformat())
        assert is_new(patient, datetime.now(timezone.utc))

    def test_empty(self):
        assert compute_kpis([], NOW).to_dict() == {
            "active_count": 0,
            "flagged_count": 0,
            "new_count": 0,
            "nearing_completion_count": 0,
        }


class TestAdherence:

    def test_percent_of_planned(self, make_course):
        course = make_course()  # 7 days x 3 doses
        for slot in range(3):
            record_dose(course, 1, slot, "Given", "nurse.a", now=NOW)
        assert adherence_percent(course) == pytest.approx(3 / 21 * 100)

    def test_missed_not_counted(self, make_course):
        course = make_course()
        record_dose(course, 1, 0, "Missed", "nurse.a", now=NOW)
        assert adherence_percent(course) == 0

    def test_monotonic_as_doses_are_given(self, make_course):
        course = make_course()
        previous = adherence_percent(course)
        for day in range(1, 8):
            for slot in range(3):
                record_dose(course, day, slot, "Given", "nurse.a", now=NOW)
                current = adherence_percent(course)
                assert current >= previous
                previous = current
        assert previous == pytest.approx(100)

    def test_zero_denominator(self, make_course):
        assert adherence_percent(make_course(planned_duration="unknown")) == 0

    def test_clamped_to_100(self):
        # Older documents can hold more entries than the planned window
        course = TherapyCourse.from_dict({
            "id": "c1",
            "drug_name": "Ceftriaxone",
            "frequency_hours": 24,
            "start_date": "2024-03-01",
            "planned_duration": "1",
            "administration_log": {"2024-03-01": ["08:00"], "2024-03-02": ["08:00"]},
        })
        assert adherence_percent(course) == 100


class TestPatientList:

    def test_max_day_of_therapy(self, make_patient, make_course):
        patient = make_patient([
            make_course(id="a", start_date=start_for_dot(3)),
            make_course(id="b", start_date=start_for_dot(9), planned_duration="14"),
            make_course(id="c", start_date=start_for_dot(30), status=CourseStatus.STOPPED),
        ])
        assert max_day_of_therapy(patient, TODAY) == 9
        assert max_day_of_therapy(make_patient([]), TODAY) == 0

    def test_search_name_or_hospital_number(self, make_patient):
        patients = [
            make_patient(id="p1", patient_name="Santos, Maria", hospital_number="H-1"),
            make_patient(id="p2", patient_name="Reyes, Jose", hospital_number="H-2"),
        ]
        assert [p.id for p in filter_patients(patients, search="SANTOS", now=NOW)] == ["p1"]
        assert [p.id for p in filter_patients(patients, search="h-2", now=NOW)] == ["p2"]

    def test_status_filter(self, make_patient):
        patients = [
            make_patient(id="p1"),
            make_patient(id="p2", status=PatientStatus.EXPIRED),
        ]
        assert [p.id for p in filter_patients(patients, now=NOW)] == ["p1"]
        assert [p.id for p in filter_patients(patients, status="Expired", now=NOW)] == ["p2"]
        assert len(filter_patients(patients, status=None, now=NOW)) == 2

    def test_kpi_filters(self, make_patient, make_course):
        missed = make_course(id="m", start_date=start_for_dot(3))
        record_dose(missed, 1, 0, "Missed", "nurse.a", now=NOW)
        patients = [
            make_patient([missed], id="flagged", created_at=(NOW - timedelta(days=5)).isoformat()),
            make_patient([make_course(start_date=start_for_dot(7))], id="nearing",
                         created_at=(NOW - timedelta(days=5)).isoformat()),
            make_patient([make_course(start_date=start_for_dot(8))], id="overrun",
                         created_at=(NOW - timedelta(hours=1)).isoformat()),
        ]
        assert [p.id for p in filter_patients(patients, kpi_filter=FILTER_RED_FLAG, now=NOW)] == ["flagged"]
        assert [p.id for p in filter_patients(patients, kpi_filter=FILTER_NEARING_STOP, now=NOW)] == ["nearing"]
        assert [p.id for p in filter_patients(patients, kpi_filter=FILTER_NEW, now=NOW)] == ["overrun"]

    def test_sort(self, make_patient, make_course):
        patients = [
            make_patient([make_course(start_date=start_for_dot(2))], id="b", patient_name="beta"),
            make_patient([make_course(start_date=start_for_dot(6))], id="a", patient_name="Alpha"),
            make_patient([], id="c", patient_name="Charlie"),
        ]
        assert [p.id for p in sort_patients(patients)] == ["a", "b", "c"]
        assert [p.id for p in sort_patients(patients, descending=True)] == ["c", "b", "a"]
        by_dot = sort_patients(patients, SORT_DAYS_ON_THERAPY, descending=True, today=TODAY)
        assert [p.id for p in by_dot] == ["a", "b", "c"]

    def test_summary_row(self, make_patient, make_course):
        patient = make_patient([make_course(start_date=start_for_dot(4))])
        row = patient_summary(patient, NOW)
        assert row["id"] == "p1"
        assert row["active_drugs"] == ["Meropenem"]
        assert row["days_on_therapy"] == 4
        assert row["flags"]["is_flagged"] is False
        assert row["egfr"].endswith("mL/min/1.73m²")
