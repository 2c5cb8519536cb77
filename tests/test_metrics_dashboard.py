import asyncio

from database.models import GeneratedTest, QualityMetric
from services.dashboard import report_stats, teacher_stats
from services import metrics_collector as collector_module
from services.metrics_collector import MetricsCollector, run_metrics_loop


def test_collect_if_due_respects_interval(db, make_question):
    make_question("Define osmosis.")
    make_question("Explain inheritance.", status="pending")
    collector = MetricsCollector(min_interval_minutes=30)

    first = collector.collect_if_due(db, now=1000.0)
    assert first["bank_size"] == 2.0
    assert first["approved_ratio"] == 0.5
    assert first["tests_generated"] == 0.0

    assert collector.collect_if_due(db, now=1000.0 + 60) is None
    assert collector.collect_if_due(db, now=1000.0 + 30 * 60) is not None

    rows = db.query(QualityMetric).filter(QualityMetric.entity_type == "question_bank").all()
    assert len(rows) == 2 * len(first)
    assert {r.measurement_method for r in rows} == {"metrics_collector_v1"}


def test_reset_makes_collection_due_again(db):
    collector = MetricsCollector(min_interval_minutes=30)
    assert collector.collect_if_due(db, now=50.0)["bank_size"] == 0.0
    assert collector.is_due(now=60.0) is False
    collector.reset()
    assert collector.is_due(now=60.0) is True


def test_metrics_loop_stops_on_cancel(db, monkeypatch):
    calls = []

    class _Session:
        def close(self):
            calls.append("close")

    monkeypatch.setattr(collector_module.metrics_collector, "collect_if_due", lambda session: calls.append("collect"))

    async def run_once():
        task = asyncio.create_task(run_metrics_loop(_Session, poll_seconds=3600))
        await asyncio.sleep(0)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    asyncio.run(run_once())
    assert calls == ["collect", "close"]


def test_teacher_stats_are_scoped_to_the_caller(db, ctx, make_question):
    make_question("Define osmosis.")
    for i in range(6):
        db.add(GeneratedTest(tos_id=1, title=f"Quiz {i}", items=[{"item_number": 1}], answer_key=[],
                             created_by=ctx["teacher"].user_id))
    db.add(GeneratedTest(tos_id=1, title="Admin quiz", items=[], answer_key=[], created_by=ctx["admin"].user_id))
    db.commit()

    mine = teacher_stats(db, ctx["teacher"])
    assert mine["total_tests"] == 6
    assert len(mine["recent_tests"]) == 5
    assert mine["recent_tests"][0]["title"] == "Quiz 5"
    assert mine["recent_tests"][0]["total_items"] == 1
    assert mine["total_questions"] == 1

    assert teacher_stats(db, ctx["admin"])["total_tests"] == 7


def test_report_stats_coverage(db, ctx, make_question):
    make_question("Define osmosis.", topic="Cells", bloom_level="remember")
    make_question("Explain inheritance.", topic="Genetics", bloom_level="understand", status="pending")
    make_question("Untagged item.", topic="Genetics", bloom_level=None, status="rejected")

    report = report_stats(db, ctx["teacher"])
    assert report["topic_coverage"] == {"Cells": 1, "Genetics": 2}
    assert report["bloom_coverage"]["remember"] == 1
    assert report["bloom_coverage"]["create"] == 0
    assert report["bloom_coverage"]["unclassified"] == 1
    assert report["approval_breakdown"] == {"pending": 1, "approved": 1, "rejected": 1}
    assert report["tests_generated"] == 0
