from concurrent.futures import ThreadPoolExecutor

from backend.app import dependencies as deps


def test_get_cache_builds_one_instance(monkeypatch):
    """Concurrent first requests must share a single RedisCache."""
    monkeypatch.setattr(deps, "_cache", None)

    with ThreadPoolExecutor(max_workers=16) as pool:
        results = list(pool.map(lambda _: deps.get_cache(), range(100)))

    assert all(r is results[0] for r in results)


def test_get_executor_builds_one_instance(monkeypatch):
    monkeypatch.setattr(deps, "_executor", None)

    with ThreadPoolExecutor(max_workers=16) as pool:
        results = list(pool.map(lambda _: deps.get_executor(), range(100)))

    try:
        assert all(r is results[0] for r in results)
    finally:
        results[0].shutdown(wait=True)


def test_shutdown_resources_drains_executor(monkeypatch, executor):
    monkeypatch.setattr(deps, "_executor", executor)
    ran = []
    executor.submit(ran.append, True)

    deps.shutdown_resources()

    assert ran == [True]
    assert deps._executor is None
