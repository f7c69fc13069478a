import threading

from harvester.application.task_queue import TaskQueue
from harvester.application.worker_pool import WorkerPool


def test_pool_drains_queue_and_exits():
    queue = TaskQueue()
    done = []
    lock = threading.Lock()

    def execute(task):
        with lock:
            done.append(task)

    for i in range(50):
        queue.put(i)
    queue.close()

    pool = WorkerPool(queue, execute, scale=4)
    pool.start()
    pool.join(timeout=5)

    assert sorted(done) == list(range(50))
    assert pool.alive == 0


def test_worker_survives_task_failure():
    queue = TaskQueue()
    done = []
    failures = []

    def execute(task):
        if task == "boom":
            raise RuntimeError("exploded")
        done.append(task)

    for task in ("a", "boom", "b"):
        queue.put(task)
    queue.close()

    pool = WorkerPool(queue, execute, scale=1, on_failure=lambda task, exc: failures.append((task, str(exc))))
    pool.start()
    pool.join(timeout=5)

    assert done == ["a", "b"]
    assert failures == [("boom", "exploded")]


def test_tasks_can_enqueue_follow_ups_after_close():
    queue = TaskQueue()
    seen = []

    def execute(task):
        seen.append(task)
        if task < 3:
            queue.put(task + 1)

    queue.put(0)
    queue.close()

    pool = WorkerPool(queue, execute, scale=2)
    pool.start()
    pool.join(timeout=5)

    assert seen == [0, 1, 2, 3]


def test_workers_are_named_daemon_threads():
    queue = TaskQueue()
    names = set()
    gate = threading.Barrier(2, timeout=5)

    def execute(task):
        names.add(threading.current_thread().name)
        assert threading.current_thread().daemon
        gate.wait()

    queue.put(1)
    queue.put(2)
    queue.close()
    pool = WorkerPool(queue, execute, scale=2)
    pool.start()
    pool.join(timeout=5)

    assert names == {"worker-1", "worker-2"}
