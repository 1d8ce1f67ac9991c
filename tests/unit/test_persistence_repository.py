"""Workflow repository tests."""

import fnmatch

import pytest

from finagent.config import FinagentConfig
from finagent.contracts import StepResult, StepSpec, StepState, StepStatus, WorkflowRecord
from finagent.persistence import (
    InMemoryWorkflowRepository,
    SQLiteWorkflowRepository,
    get_repository,
)
from finagent.persistence.redis import INDEX_KEY, RedisWorkflowRepository
from finagent.personas import AgentPersona


class FakeRedis:
    """Minimal async stand-in for the redis client commands the store uses."""

    def __init__(self):
        self.data = {}
        self.sets = {}
        self.closed = False

    async def set(self, key, value):
        self.data[key] = value

    async def get(self, key):
        return self.data.get(key)

    async def delete(self, *keys):
        for key in keys:
            self.data.pop(key, None)

    async def sadd(self, key, member):
        self.sets.setdefault(key, set()).add(member)

    async def srem(self, key, member):
        self.sets.get(key, set()).discard(member)

    async def smembers(self, key):
        return set(self.sets.get(key, set()))

    async def scan_iter(self, match):
        for key in list(self.data):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def aclose(self):
        self.closed = True


def _record(workflow_id="wf-1", agents=("analyst", "trader")) -> WorkflowRecord:
    return WorkflowRecord(id=workflow_id, agents=[StepSpec.coerce(a) for a in agents])


def _state(agent=AgentPersona.ANALYST) -> StepState:
    return StepState(agent=agent, task="task")


def _result(agent=AgentPersona.ANALYST) -> StepResult:
    return StepResult(agent=agent, task="task", result={"response": "ok"})


@pytest.fixture(params=["inmemory", "sqlite", "redis"])
def repo(request, tmp_path):
    if request.param == "inmemory":
        return InMemoryWorkflowRepository()
    if request.param == "sqlite":
        return SQLiteWorkflowRepository(tmp_path / "wf.db")
    return RedisWorkflowRepository(client=FakeRedis())


@pytest.mark.asyncio
async def test_repository_crud(repo):
    record = _record()
    await repo.create_workflow(record)
    await repo.set_step_state("wf-1", 0, _state())
    await repo.set_step_result("wf-1", 0, _result())

    record.current_step = 1
    record.results.append(_result())
    await repo.save_workflow(record)

    stored = await repo.get_workflow("wf-1")
    assert stored is not None
    assert stored.current_step == 1
    assert stored.results[0].result == {"response": "ok"}

    state = await repo.get_step_state("wf-1", 0)
    assert state.status == StepStatus.PROCESSING
    assert (await repo.get_step_result("wf-1", 0)).result == {"response": "ok"}
    assert await repo.get_step_state("wf-1", 1) is None
    assert await repo.get_step_result("wf-1", 1) is None

    assert [w.id for w in await repo.list_workflows()] == ["wf-1"]


@pytest.mark.asyncio
async def test_state_and_result_are_separate_records(repo):
    await repo.create_workflow(_record())
    await repo.set_step_result("wf-1", 0, _result())
    assert await repo.get_step_state("wf-1", 0) is None

    await repo.set_step_state("wf-1", 0, _state())
    assert (await repo.get_step_result("wf-1", 0)) is not None


@pytest.mark.asyncio
async def test_delete_removes_workflow_and_steps(repo):
    await repo.create_workflow(_record())
    await repo.set_step_state("wf-1", 0, _state())
    await repo.set_step_result("wf-1", 0, _result())

    await repo.delete_workflow("wf-1")

    assert await repo.get_workflow("wf-1") is None
    assert await repo.get_step_state("wf-1", 0) is None
    assert await repo.get_step_result("wf-1", 0) is None
    assert await repo.list_workflows() == []


@pytest.mark.asyncio
async def test_recreating_a_workflow_drops_stale_steps(repo):
    await repo.create_workflow(_record())
    await repo.set_step_result("wf-1", 0, _result())

    await repo.create_workflow(_record())
    assert await repo.get_step_result("wf-1", 0) is None


@pytest.mark.asyncio
async def test_workflows_with_prefixed_ids_do_not_collide(repo):
    await repo.create_workflow(_record("wf-1"))
    await repo.create_workflow(_record("wf-10"))
    await repo.set_step_state("wf-10", 0, _state())

    await repo.delete_workflow("wf-1")
    assert await repo.get_step_state("wf-10", 0) is not None


@pytest.mark.asyncio
async def test_inmemory_uses_shared_key_layout():
    repo = InMemoryWorkflowRepository()
    await repo.create_workflow(_record())
    await repo.set_step_state("wf-1", 0, _state())
    await repo.set_step_result("wf-1", 0, _result())

    assert sorted(repo.keys()) == [
        "workflows/wf-1",
        "workflows/wf-1:result:0",
        "workflows/wf-1:step:0",
    ]


@pytest.mark.asyncio
async def test_inmemory_returns_copies():
    repo = InMemoryWorkflowRepository()
    record = _record()
    await repo.create_workflow(record)
    record.current_step = 5

    assert (await repo.get_workflow("wf-1")).current_step == 0


@pytest.mark.asyncio
async def test_redis_repository_indexes_and_closes():
    client = FakeRedis()
    repo = RedisWorkflowRepository(client=client)
    await repo.create_workflow(_record())

    assert client.sets[INDEX_KEY] == {"wf-1"}
    assert "workflows/wf-1" in client.data

    await repo.close()
    assert client.closed


def test_get_repository_selects_backend(tmp_path, monkeypatch):
    for name in ("FINAGENT_DATABASE_URL", "DATABASE_URL"):
        monkeypatch.delenv(name, raising=False)
    config = FinagentConfig()

    assert isinstance(get_repository(config=config), InMemoryWorkflowRepository)
    sqlite_repo = get_repository(f"sqlite://{tmp_path / 'wf.db'}", config=config)
    assert isinstance(sqlite_repo, SQLiteWorkflowRepository)
    assert isinstance(
        get_repository("redis://localhost:6379/0", config=config), RedisWorkflowRepository
    )
    with pytest.raises(ValueError, match="Unsupported database backend"):
        get_repository("mysql://nope", config=config)
