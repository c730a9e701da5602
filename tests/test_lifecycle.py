import threading

import pytest

from bridge_gen import HandleArena, InternalFault


class Resource:
    def __init__(self, name):
        self.name = name


@pytest.fixture
def torn_down():
    return []


@pytest.fixture
def arena(torn_down):
    return HandleArena(torn_down.append)


def test_handles_are_never_null(arena):
    handles = [arena.allocate(Resource(i)) for i in range(3)]
    assert 0 not in handles
    assert len(set(handles)) == 3


def test_release_runs_destructor_once(arena, torn_down):
    res = Resource('a')
    handle = arena.allocate(res)
    assert arena.get(handle) is res
    assert arena.release(handle)
    assert torn_down == [res]
    assert handle not in arena
    with pytest.raises(InternalFault, match='not live'):
        arena.release(handle)
    assert torn_down == [res]


def test_clone_shares_ownership(arena, torn_down):
    handle = arena.allocate(Resource('a'))
    clone = arena.clone_handle(handle)
    assert clone == handle
    assert arena.ref_count(handle) == 2
    assert not arena.release(handle)
    assert torn_down == []
    assert arena.get(clone).name == 'a'
    assert arena.release(clone)
    assert len(torn_down) == 1
    assert arena.ref_count(handle) == 0


def test_reallocating_a_live_object(arena, torn_down):
    res = Resource('a')
    first = arena.allocate(res)
    second = arena.allocate(res)
    assert first == second
    assert arena.ref_count(first) == 2
    arena.release(first)
    arena.release(second)
    assert torn_down == [res]


def test_null_handle(arena):
    with pytest.raises(InternalFault, match='null handle'):
        arena.get(0)


def test_without_destructor():
    arena = HandleArena()
    handle = arena.allocate(Resource('a'))
    assert arena.release(handle)
    assert len(arena) == 0


def test_concurrent_clone_and_release(arena, torn_down):
    res = Resource('shared')
    handle = arena.allocate(res)
    threads_count = 8
    rounds = 500

    def worker():
        for _ in range(rounds):
            arena.clone_handle(handle)
            arena.release(handle)

    threads = [threading.Thread(target=worker) for _ in range(threads_count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert arena.ref_count(handle) == 1
    assert torn_down == []
    arena.release(handle)
    assert torn_down == [res]


def test_concurrent_final_release_tears_down_once(arena, torn_down):
    res = Resource('shared')
    handle = arena.allocate(res)
    for _ in range(15):
        arena.clone_handle(handle)
    barrier = threading.Barrier(16)
    results = []

    def worker():
        barrier.wait()
        results.append(arena.release(handle))

    threads = [threading.Thread(target=worker) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 1
    assert torn_down == [res]
