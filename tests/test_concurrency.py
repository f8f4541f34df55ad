import random
import threading
from concurrent.futures import ThreadPoolExecutor

from kanban.engine import MutationEngine
from kanban.errors import BadRequestError, NotFoundError
from kanban.models import BoardList
from kanban.storage import MemoryStore


def setup_board(engine, user, title, list_count=3, card_count=6):
    board = engine.add_board(user.id, title)
    lists = [engine.add_list(board.id, user.id, f"List {i}") for i in range(list_count)]
    cards = [engine.add_card(board.id, lists[0].id, user.id, f"Card {i}") for i in range(card_count)]
    return board, [lst.id for lst in lists], [c.id for c in cards]


def locate(engine, board_id, list_ids, card_id):
    for list_id in list_ids:
        if card_id in engine.get_list(board_id, list_id).cards:
            return list_id
    return None


def test_concurrent_card_moves_keep_cards_unique():
    engine = MutationEngine(MemoryStore(), observer=lambda event: None)
    user = engine.register("Alice", "alice@example.com")
    board, list_ids, card_ids = setup_board(engine, user, "Busy")
    logged_before = len(engine.get_board(board.id).activity)

    def worker(seed):
        rng = random.Random(seed)
        attempts = 0
        for _ in range(25):
            card_id = rng.choice(card_ids)
            source = locate(engine, board.id, list_ids, card_id)
            target = rng.choice(list_ids)
            attempts += 1
            try:
                engine.move_card(board.id, card_id, user.id, source, target, rng.randint(-1, 4))
            except (BadRequestError, NotFoundError):
                # another worker moved the card first
                continue
        return attempts

    with ThreadPoolExecutor(max_workers=8) as pool:
        attempts = sum(pool.map(worker, range(8)))

    placements = [card for list_id in list_ids for card in engine.get_list(board.id, list_id).cards]
    assert sorted(placements) == sorted(card_ids)
    logged = len(engine.get_board(board.id).activity) - logged_before
    assert 0 <= logged <= attempts
    assert all(" moved 'Card " in e.text for e in engine.get_board(board.id).activity[:logged])


def test_boards_are_independent_under_load():
    engine = MutationEngine(MemoryStore(), observer=lambda event: None)
    user = engine.register("Alice", "alice@example.com")
    boards = [setup_board(engine, user, f"Board {i}", card_count=0) for i in range(4)]

    def fill(index):
        board, list_ids, _ = boards[index]
        for n in range(20):
            engine.add_card(board.id, list_ids[n % len(list_ids)], user.id, f"Task {n}")
        return board.id

    with ThreadPoolExecutor(max_workers=4) as pool:
        board_ids = list(pool.map(fill, range(4)))

    for board_id, (_, list_ids, _) in zip(board_ids, boards):
        cards = [c for list_id in list_ids for c in engine.get_list(board_id, list_id).cards]
        assert len(cards) == len(set(cards)) == 20
        added = [e.text for e in engine.get_board(board_id).activity if "Task" in e.text]
        assert len(added) == 20
        assert added[0].startswith("Alice added 'Task 19'")


def test_concurrent_joins_keep_both_sides_in_sync():
    engine = MutationEngine(MemoryStore(), observer=lambda event: None)
    owner = engine.register("Owner", "owner@example.com")
    joiner = engine.register("Joiner", "joiner@example.com")
    boards = [engine.add_board(owner.id, f"Board {i}") for i in range(6)]

    with ThreadPoolExecutor(max_workers=6) as pool:
        list(pool.map(lambda b: engine.add_member(b.id, owner.id, joiner.id), boards))

    assert sorted(engine.get_user(joiner.id).boards) == sorted(b.id for b in boards)
    for board in boards:
        assert [m.user for m in engine.get_board(board.id).members] == [owner.id, joiner.id]


class InterruptingStore(MemoryStore):
    """Calls ``interrupt`` once, right after the next list is loaded."""

    def __init__(self):
        super().__init__()
        self.interrupt = None

    def load(self, kind, aggregate_id):
        loaded = super().load(kind, aggregate_id)
        if kind is BoardList and self.interrupt is not None:
            interrupt, self.interrupt = self.interrupt, None
            interrupt()
        return loaded


def test_board_lists_never_show_a_card_twice_during_a_move():
    store = InterruptingStore()
    engine = MutationEngine(store, observer=lambda event: None)
    user = engine.register("Alice", "alice@example.com")
    board, list_ids, card_ids = setup_board(engine, user, "Busy", list_count=2, card_count=1)
    mover = threading.Thread(
        target=engine.move_card,
        args=(board.id, card_ids[0], user.id, list_ids[0], list_ids[1], 0),
    )

    def move_between_list_loads():
        mover.start()
        mover.join(timeout=0.2)

    store.interrupt = move_between_list_loads
    lists = engine.get_board_lists(board.id)
    mover.join()

    assert [card for lst in lists for card in lst.cards] == card_ids
    assert lists[0].cards == card_ids
    assert engine.get_list(board.id, list_ids[1]).cards == card_ids
