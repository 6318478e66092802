import time
from homestead.MANAGERS.plan_executor import PlanExecutor
from homestead.MANAGERS.reconciler import plan
from homestead.MODELS.service_descriptor import ResolvedDescriptor
from homestead.PARSERS.catalog_parser import load
from conftest import FakeEngine


def test_stress_reconciliation():
    """
    Plans and executes 200 services arranged in 20 dependency chains of 10.
    """
    desired = []
    for chain in range(20):
        for link in range(10):
            deps = [f"c{chain}-{link - 1}"] if link else []
            desired.append(ResolvedDescriptor(name=f"c{chain}-{link}", image="dummy", depends_on=deps))

    engine = FakeEngine(fail={"c3-4"})
    start_time = time.time()
    report = PlanExecutor(engine, max_workers=8).execute(plan(desired, engine.list_running()))
    end_time = time.time()

    print(f"Reconciled 200 services in {end_time - start_time:.2f}s")
    assert len(report.outcomes) == 200
    assert report.failed == ["c3-4"]
    assert sorted(report.blocked) == sorted(f"c3-{i}" for i in range(5, 10))

    # an unchanged engine yields an all no-op plan
    engine.fail.clear()
    PlanExecutor(engine, max_workers=8).execute(plan(desired, engine.list_running()))
    assert plan(desired, engine.list_running()).is_noop()


def test_large_catalog_parsing():
    # Generate a large catalog file
    content = "services:\n"
    for i in range(1000):
        content += f"  service_{i}:\n"
        content += f"    image: image_{i}\n"
        content += f"    environment:\n"
        content += f"      - VAR_{i}=${{VALUE_{i}:-default}}\n"
        if i:
            content += f"    depends_on: [service_{i - 1}]\n"

    start_time = time.time()
    catalog = load(content)
    end_time = time.time()

    assert len(catalog) == 1000
    assert end_time - start_time < 5.0
