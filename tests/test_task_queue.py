"""Tests for the task claim/complete protocol."""
from sync_work.coordination import AgentState, TaskQueue, TaskStatus


def hand_to_peer(peer_store, task_id):
    """Rewrite the document the way a remote-wins merge would after the peer's claim."""
    def mutate(doc):
        task = doc.find_task(task_id)
        task.assigned_to = "agent-2"
        task.status = TaskStatus.IN_PROGRESS
    peer_store.update(mutate)


class TestAddTask:

    def test_add_task_is_published(self, queue, transport):
        task = queue.add_task("Write docs", {"priority": "high"})
        assert transport.pushes == ["Added task: Write docs"]
        assert queue.store.get_task(task.id).metadata == {"priority": "high"}

    def test_task_lost_in_conflict_is_added_again(self, queue, transport, peer_store):
        def drop_once(message):
            if len(transport.pushes) == 1:
                peer_store.update(lambda doc: doc.tasks.clear())

        transport.on_push = drop_once

        task = queue.add_task("Survive the merge")
        assert len(transport.pushes) == 2
        assert [t.id for t in queue.list_tasks()] == [task.id]

    def test_last_re_append_is_pushed(self, store, transport, peer_store):
        queue = TaskQueue(store, transport, max_claim_attempts=2)
        published = []

        def drop_until_last(message):
            if len(transport.pushes) <= 2:
                peer_store.update(lambda doc: doc.tasks.clear())
            else:
                published.extend(t.id for t in store.read().tasks)

        transport.on_push = drop_until_last

        task = queue.add_task("Survive two merges")
        assert transport.pushes == ["Added task: Survive two merges"] * 3
        assert published == [task.id]
        assert [t.id for t in queue.list_tasks()] == [task.id]


class TestClaim:

    def test_claims_first_pending_task(self, queue, transport):
        first = queue.add_task("first")
        queue.add_task("second")

        claimed = queue.get_next_task()
        assert claimed.id == first.id
        assert claimed.status == TaskStatus.IN_PROGRESS
        assert claimed.assigned_to == "agent-1"
        assert transport.pushes[-1] == "Claimed task: first"
        assert queue.get_current_task().id == first.id

    def test_empty_backlog(self, queue):
        assert queue.get_next_task() is None

    def test_lost_race_moves_to_next_task(self, queue, transport, peer_store):
        first = queue.add_task("first")
        second = queue.add_task("second")

        def peer_claims_first(message):
            if message == "Claimed task: first":
                hand_to_peer(peer_store, first.id)

        transport.on_push = peer_claims_first

        claimed = queue.get_next_task()
        assert claimed.id == second.id
        assert queue.store.get_task(first.id).assigned_to == "agent-2"
        assert queue.store.get_self().current_task == second.id

    def test_exhausted_attempts_leave_agent_idle(self, store, transport, peer_store):
        queue = TaskQueue(store, transport, max_claim_attempts=2)
        tasks = [queue.add_task(f"task {i}") for i in range(3)]

        def peer_claims_everything(message):
            if message.startswith("Claimed task"):
                for task in tasks:
                    if queue.store.get_task(task.id).assigned_to == "agent-1":
                        hand_to_peer(peer_store, task.id)

        transport.on_push = peer_claims_everything

        assert queue.get_next_task() is None
        me = store.get_self()
        assert me.status == AgentState.IDLE
        assert me.current_task is None
        assert len([p for p in transport.pushes if p.startswith("Claimed")]) == 2

    def test_two_agents_never_share_a_task(self, store, peer_store, transport):
        mine = TaskQueue(store, transport)
        theirs = TaskQueue(peer_store, transport)
        mine.add_task("only one")

        assert mine.get_next_task() is not None
        assert theirs.get_next_task() is None


class TestComplete:

    def test_complete_current_task(self, queue, transport):
        queue.add_task("finish me")
        queue.get_next_task()

        done = queue.complete_current_task({"ok": True})
        assert done.status == TaskStatus.COMPLETED
        assert done.result == {"ok": True}
        assert transport.pushes[-1] == "Completed task: finish me"

        me = queue.store.get_self()
        assert me.status == AgentState.IDLE
        assert me.current_task is None
        assert queue.get_completed_tasks()[0].id == done.id

    def test_nothing_to_complete(self, queue, transport):
        assert queue.complete_current_task() is None
        assert transport.pushes == []

    def test_vanished_task_resets_agent(self, queue):
        queue.store.update_self_status(AgentState.WORKING, "task-gone")
        assert queue.complete_current_task() is None
        assert queue.store.get_self().status == AgentState.IDLE


class TestListing:

    def test_views(self, queue):
        a = queue.add_task("a")
        queue.add_task("b")
        queue.get_next_task()

        assert [t.id for t in queue.get_my_tasks()] == [a.id]
        assert len(queue.get_pending_tasks()) == 1
        assert queue.get_completed_tasks() == ()
        assert len(queue.list_tasks()) == 2
