"""
Tests for the synchronization primitives: mutex, threads, condition variables, Arc.
"""

import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from mir2petri.arc_manager import ArcManager
from mir2petri.condvar_manager import CondvarManager
from mir2petri.errors import UnsupportedCallError
from mir2petri.function_call import FunctionPlaces
from mir2petri.memory import CondvarRef, Memory, MutexRef
from mir2petri.mir_model import DEREF, CalleeKind, HandleKind, Location, Operand
from mir2petri.mir_parser import MirProgram
from mir2petri.mutex_manager import MutexManager
from mir2petri.pn_model import PetriNet
from mir2petri.thread_manager import Thread, ThreadManager
from mir2petri.translator import translate

DOUBLE_LOCK_MIR = """
fn main() -> () {
    let _1: std::sync::Mutex<i32>;
    let _2: std::sync::MutexGuard<'_, i32>;
    let _3: std::sync::MutexGuard<'_, i32>;
    let _4: &std::sync::Mutex<i32>;
    bb0: {
        _1 = std::sync::Mutex::<i32>::new(const 0_i32) -> [return: bb1, unwind continue];
    }
    bb1: {
        _4 = &_1;
        _2 = std::sync::Mutex::<i32>::lock(copy _4) -> [return: bb2, unwind continue];
    }
    bb2: {
        _3 = std::sync::Mutex::<i32>::lock(copy _4) -> [return: bb3, unwind continue];
    }
    bb3: {
        drop(_3) -> [return: bb4, unwind continue];
    }
    bb4: {
        drop(_2) -> [return: bb5, unwind continue];
    }
    bb5: {
        return;
    }
}
"""

LOCK_UNWRAP_MIR = """
fn main() -> () {
    let _1: std::sync::Mutex<i32>;
    let _2: std::result::Result<std::sync::MutexGuard<'_, i32>, std::sync::PoisonError<std::sync::MutexGuard<'_, i32>>>;
    let _3: std::sync::MutexGuard<'_, i32>;
    let _4: &std::sync::Mutex<i32>;
    let _5: ();
    bb0: {
        _1 = std::sync::Mutex::<i32>::new(const 0_i32) -> [return: bb1, unwind continue];
    }
    bb1: {
        _4 = &_1;
        _2 = std::sync::Mutex::<i32>::lock(copy _4) -> [return: bb2, unwind: bb5];
    }
    bb2: {
        _3 = std::result::Result::<std::sync::MutexGuard<'_, i32>, std::sync::PoisonError<std::sync::MutexGuard<'_, i32>>>::unwrap(move _2) -> [return: bb3, unwind: bb5];
    }
    bb3: {
        _5 = std::mem::drop::<std::sync::MutexGuard<'_, i32>>(move _3) -> [return: bb4, unwind: bb5];
    }
    bb4: {
        return;
    }
    bb5 (cleanup): {
        resume;
    }
}
"""

# Arc<(Mutex<bool>, Condvar)>: the spawned thread notifies, main waits once
CONDVAR_MIR = """
fn main() -> () {
    let mut _0: ();
    let _1: std::sync::Arc<(std::sync::Mutex<bool>, std::sync::Condvar)>;
    let mut _2: (std::sync::Mutex<bool>, std::sync::Condvar);
    let mut _3: std::sync::Mutex<bool>;
    let mut _4: std::sync::Condvar;
    let _5: std::sync::Arc<(std::sync::Mutex<bool>, std::sync::Condvar)>;
    let mut _6: &std::sync::Arc<(std::sync::Mutex<bool>, std::sync::Condvar)>;
    let _7: std::thread::JoinHandle<()>;
    let mut _8: {closure@src/main.rs:8:24: 8:31};
    let _9: &(std::sync::Mutex<bool>, std::sync::Condvar);
    let mut _10: &std::sync::Arc<(std::sync::Mutex<bool>, std::sync::Condvar)>;
    let mut _11: std::sync::MutexGuard<'_, bool>;
    let mut _12: std::result::Result<std::sync::MutexGuard<'_, bool>, std::sync::PoisonError<std::sync::MutexGuard<'_, bool>>>;
    let _13: &std::sync::Mutex<bool>;
    let mut _14: std::sync::MutexGuard<'_, bool>;
    let mut _15: std::result::Result<std::sync::MutexGuard<'_, bool>, std::sync::PoisonError<std::sync::MutexGuard<'_, bool>>>;
    let _16: &std::sync::Condvar;
    let mut _17: std::result::Result<(), std::boxed::Box<dyn std::any::Any + std::marker::Send>>;
    bb0: {
        _3 = std::sync::Mutex::<bool>::new(const false) -> [return: bb1, unwind continue];
    }
    bb1: {
        _4 = std::sync::Condvar::new() -> [return: bb2, unwind continue];
    }
    bb2: {
        _2 = (move _3, move _4);
        _1 = std::sync::Arc::<(std::sync::Mutex<bool>, std::sync::Condvar)>::new(move _2) -> [return: bb3, unwind continue];
    }
    bb3: {
        _6 = &_1;
        _5 = <std::sync::Arc<(std::sync::Mutex<bool>, std::sync::Condvar)> as std::clone::Clone>::clone(move _6) -> [return: bb4, unwind continue];
    }
    bb4: {
        _8 = {closure@src/main.rs:8:24: 8:31} { pair2: move _5 };
        _7 = std::thread::spawn::<{closure@src/main.rs:8:24: 8:31}, ()>(move _8) -> [return: bb5, unwind continue];
    }
    bb5: {
        _10 = &_1;
        _9 = <std::sync::Arc<(std::sync::Mutex<bool>, std::sync::Condvar)> as std::ops::Deref>::deref(move _10) -> [return: bb6, unwind continue];
    }
    bb6: {
        _13 = &((*_9).0: std::sync::Mutex<bool>);
        _12 = std::sync::Mutex::<bool>::lock(copy _13) -> [return: bb7, unwind continue];
    }
    bb7: {
        _11 = std::result::Result::<std::sync::MutexGuard<'_, bool>, std::sync::PoisonError<std::sync::MutexGuard<'_, bool>>>::unwrap(move _12) -> [return: bb8, unwind continue];
    }
    bb8: {
        _16 = &((*_9).1: std::sync::Condvar);
        _15 = std::sync::Condvar::wait::<bool>(copy _16, move _11) -> [return: bb9, unwind continue];
    }
    bb9: {
        _14 = std::result::Result::<std::sync::MutexGuard<'_, bool>, std::sync::PoisonError<std::sync::MutexGuard<'_, bool>>>::unwrap(move _15) -> [return: bb10, unwind continue];
    }
    bb10: {
        drop(_14) -> [return: bb11, unwind continue];
    }
    bb11: {
        _17 = std::thread::JoinHandle::<()>::join(move _7) -> [return: bb12, unwind continue];
    }
    bb12: {
        return;
    }
}

fn main::{closure#0}(_1: {closure@src/main.rs:8:24: 8:31}) -> () {
    debug pair2 => (_1.0: std::sync::Arc<(std::sync::Mutex<bool>, std::sync::Condvar)>);
    let mut _0: ();
    let _2: &(std::sync::Mutex<bool>, std::sync::Condvar);
    let mut _3: &std::sync::Arc<(std::sync::Mutex<bool>, std::sync::Condvar)>;
    let mut _4: std::sync::MutexGuard<'_, bool>;
    let mut _5: std::result::Result<std::sync::MutexGuard<'_, bool>, std::sync::PoisonError<std::sync::MutexGuard<'_, bool>>>;
    let _6: &std::sync::Mutex<bool>;
    let _7: &std::sync::Condvar;
    let _8: ();
    bb0: {
        _3 = &(_1.0: std::sync::Arc<(std::sync::Mutex<bool>, std::sync::Condvar)>);
        _2 = <std::sync::Arc<(std::sync::Mutex<bool>, std::sync::Condvar)> as std::ops::Deref>::deref(move _3) -> [return: bb1, unwind continue];
    }
    bb1: {
        _6 = &((*_2).0: std::sync::Mutex<bool>);
        _5 = std::sync::Mutex::<bool>::lock(copy _6) -> [return: bb2, unwind continue];
    }
    bb2: {
        _4 = std::result::Result::<std::sync::MutexGuard<'_, bool>, std::sync::PoisonError<std::sync::MutexGuard<'_, bool>>>::unwrap(move _5) -> [return: bb3, unwind continue];
    }
    bb3: {
        _7 = &((*_2).1: std::sync::Condvar);
        _8 = std::sync::Condvar::notify_one(copy _7) -> [return: bb4, unwind continue];
    }
    bb4: {
        drop(_4) -> [return: bb5, unwind continue];
    }
    bb5: {
        drop(_1) -> [return: bb6, unwind continue];
    }
    bb6: {
        return;
    }
}
"""



def reachable_markings(net: PetriNet) -> list[dict[str, int]]:
    """Explicit state space of a small bounded net."""
    arcs = {label: (net.preset(label), net.postset(label)) for label in net.transitions}
    initial = dict(net.initial_marking)
    seen = {frozenset(initial.items())}
    result = [initial]
    queue = [initial]
    while queue:
        marking = queue.pop()
        for pre, post in arcs.values():
            if not all(marking.get(p, 0) >= w for p, w in pre.items()):
                continue
            new = dict(marking)
            for place, weight in pre.items():
                new[place] -= weight
                if new[place] == 0:
                    del new[place]
            for place, weight in post.items():
                new[place] = new.get(place, 0) + weight
            key = frozenset(new.items())
            if key not in seen:
                seen.add(key)
                result.append(new)
                queue.append(new)
    return result


def enabled(net: PetriNet, marking: dict[str, int], label: str) -> bool:
    return all(marking.get(p, 0) >= w for p, w in net.preset(label).items())


class TestMutex(unittest.TestCase):
    def test_mutex_places(self) -> None:
        net = translate(MirProgram.from_text(DOUBLE_LOCK_MIR))
        self.assertEqual(net.places["MUTEX_0_UNLOCKED"].tokens, 1)
        self.assertEqual(net.places["MUTEX_0_LOCKED"].tokens, 0)
        self.assertEqual(
            net.initial_marking, {"PROGRAM_START": 1, "MUTEX_0_UNLOCKED": 1}
        )

    def test_lock_transition_has_mutex_arcs(self) -> None:
        net = translate(MirProgram.from_text(DOUBLE_LOCK_MIR))
        lock = "std_sync_Mutex_lock_0"
        self.assertEqual(net.transitions[lock].kind, "lock")
        self.assertEqual(
            net.preset(lock), {"main_BASIC_BLOCK_END_PLACE_1": 1, "MUTEX_0_UNLOCKED": 1}
        )
        self.assertEqual(net.postset(lock), {"main_BASIC_BLOCK_2": 1, "MUTEX_0_LOCKED": 1})

    def test_drop_releases_guard(self) -> None:
        net = translate(MirProgram.from_text(DOUBLE_LOCK_MIR))
        for label in ("main_DROP_3", "main_DROP_4"):
            self.assertEqual(net.transitions[label].kind, "unlock")
            self.assertIn("MUTEX_0_LOCKED", net.preset(label))
            self.assertIn("MUTEX_0_UNLOCKED", net.postset(label))

    def test_double_lock_blocks_forever(self) -> None:
        net = translate(MirProgram.from_text(DOUBLE_LOCK_MIR))
        markings = reachable_markings(net)
        self.assertTrue(any(enabled(net, m, "std_sync_Mutex_lock_0") for m in markings))
        self.assertFalse(any(enabled(net, m, "std_sync_Mutex_lock_1") for m in markings))
        self.assertFalse(any("PROGRAM_END" in m for m in markings))

    def test_guard_through_unwrap_and_mem_drop(self) -> None:
        net = translate(MirProgram.from_text(LOCK_UNWRAP_MIR))
        release = "main_BLOCK_3_CALL_std_mem_drop"
        self.assertEqual(net.transitions[release].kind, "unlock")
        self.assertEqual(
            net.preset(release), {"main_BASIC_BLOCK_3": 1, "MUTEX_0_LOCKED": 1}
        )
        markings = reachable_markings(net)
        self.assertIn({"PROGRAM_END": 1, "MUTEX_0_UNLOCKED": 1}, markings)

    def test_panic_while_locking_poisons(self) -> None:
        net = translate(MirProgram.from_text(LOCK_UNWRAP_MIR))
        unwind = "std_sync_Mutex_lock_0_UNWIND"
        self.assertEqual(net.preset(unwind), {"main_BASIC_BLOCK_END_PLACE_1": 1})
        self.assertEqual(net.postset(unwind), {"main_BASIC_BLOCK_5": 1})
        # A panic after the lock leaves the mutex locked
        markings = reachable_markings(net)
        self.assertIn({"PROGRAM_PANIC": 1, "MUTEX_0_LOCKED": 1}, markings)


class TestThreads(unittest.TestCase):
    def setUp(self) -> None:
        self.net = PetriNet()
        self.memory = Memory()
        self.manager = ThreadManager()
        self.counter = 0

    def places(self) -> FunctionPlaces:
        self.counter += 1
        return FunctionPlaces(
            self.net.add_place(f"S{self.counter}"), self.net.add_place(f"E{self.counter}")
        )

    def spawn(self) -> None:
        worker = Operand(kind="const", constant="worker", function="worker")
        self.manager.translate_call_spawn(
            self.places(), [worker], Location(1), self.net, self.memory
        )

    def test_join_found_before_drain(self) -> None:
        self.spawn()
        join = self.manager.translate_call_join(self.places(), Location(1), self.net, self.memory)
        self.assertEqual(self.net.preset(join.label), {"S2": 1})
        self.manager.pop_thread().prepare_for_translation(self.net)
        self.assertEqual(self.net.postset("THREAD_END_0"), {join.label: 1})
        self.assertEqual(self.net.postset("std_thread_spawn_0"), {"E1": 1, "THREAD_START_0": 1})

    def test_join_found_after_drain(self) -> None:
        self.spawn()
        thread = self.manager.pop_thread()
        thread.prepare_for_translation(self.net)
        self.assertEqual(self.net.postset("THREAD_END_0"), {})
        join = self.manager.translate_call_join(self.places(), Location(1), self.net, self.memory)
        self.assertEqual(self.net.postset("THREAD_END_0"), {join.label: 1})
        self.assertIsNone(self.manager.pop_thread())

    def test_spawn_needs_function(self) -> None:
        with self.assertRaises(UnsupportedCallError):
            self.manager.translate_call_spawn(
                self.places(), [Operand("move", Location(2))], None, self.net, self.memory
            )

    def test_spawn_moves_captured_handles(self) -> None:
        self.memory.mutexes.link(Location(2, (0,)), MutexRef(0))
        closure = Operand("move", Location(2), function="worker")
        self.manager.translate_call_spawn(self.places(), [closure], None, self.net, self.memory)
        self.assertEqual(len(self.memory.mutexes), 0)

        thread = self.manager.threads[0]
        callee = Memory()
        thread.move_handles(callee, {HandleKind.MUTEX: [Location(1, (0,))]})
        self.assertEqual(callee.mutexes.get(Location(1, (0,))), MutexRef(0))

    def test_spawn_keeps_tuple_fields_of_captures(self) -> None:
        # closure { pair: Arc<(Mutex<bool>, Condvar)> }
        self.memory.mutexes.link(Location(6, (0, 0)), MutexRef(0))
        self.memory.condvars.link(Location(6, (0, 1)), CondvarRef(0))
        closure = Operand("move", Location(6), function="worker")
        self.manager.translate_call_spawn(self.places(), [closure], None, self.net, self.memory)

        callee = Memory()
        pair = Location(1, (0,))
        self.manager.threads[0].move_handles(
            callee, {HandleKind.MUTEX: [pair], HandleKind.CONDVAR: [pair]}
        )
        self.assertEqual(callee.mutexes.get(Location(1, (DEREF, 0, DEREF, 0))), MutexRef(0))
        self.assertEqual(callee.condvars.get(Location(1, (0, 1))), CondvarRef(0))
        self.assertIsNone(callee.mutexes.get_optional(pair))

    def test_missing_captured_handle(self) -> None:
        thread = Thread(
            index=0,
            function="worker",
            spawn_transition=self.net.add_transition("T"),
            handles={HandleKind.MUTEX: []},
        )
        with self.assertRaises(UnsupportedCallError):
            thread.move_handles(Memory(), {HandleKind.MUTEX: [Location(1, (0,))]})


class TestCondvar(unittest.TestCase):
    def setUp(self) -> None:
        self.net = PetriNet()
        self.memory = Memory()
        self.mutexes = MutexManager()
        self.condvars = CondvarManager()
        places = [
            FunctionPlaces(self.net.add_place(f"S{i}"), self.net.add_place(f"E{i}"))
            for i in range(5)
        ]
        self.mutexes.translate_call_new(places[0], Location(1), self.net, self.memory)
        self.condvars.translate_call_new(places[1], Location(2), self.net, self.memory)
        self.mutexes.translate_call_lock(places[2], Location(1), Location(3), self.net, self.memory)
        self.park = self.condvars.translate_call_wait(
            places[3], Location(2), Location(3), Location(4), self.net, self.memory, self.mutexes
        )
        self.deliver = self.condvars.translate_call_notify(
            places[4], Location(2), self.net, self.memory
        )

    def test_wait_releases_mutex(self) -> None:
        self.assertEqual(self.park.label, "std_sync_Condvar_wait_0")
        self.assertEqual(self.net.preset(self.park.label), {"S3": 1, "MUTEX_0_LOCKED": 1})
        self.assertEqual(
            self.net.postset(self.park.label),
            {"CONDVAR_WAIT_0_PARKED": 1, "CONDVAR_0_WAITING": 1, "MUTEX_0_UNLOCKED": 1},
        )

    def test_resume_needs_notification_and_mutex(self) -> None:
        resume = "std_sync_Condvar_wait_0_RESUME"
        self.assertEqual(
            self.net.preset(resume),
            {"CONDVAR_WAIT_0_PARKED": 1, "CONDVAR_0_NOTIFIED": 1, "MUTEX_0_UNLOCKED": 1},
        )
        self.assertEqual(self.net.postset(resume), {"MUTEX_0_LOCKED": 1, "E3": 1})
        self.assertEqual(self.memory.lock_guards.get(Location(4)), MutexRef(0))

    def test_notify_delivers_or_is_lost(self) -> None:
        self.assertEqual(self.deliver.label, "std_sync_Condvar_notify_0")
        self.assertEqual(self.net.preset(self.deliver.label), {"S4": 1, "CONDVAR_0_WAITING": 1})
        self.assertEqual(self.net.postset(self.deliver.label), {"E4": 1, "CONDVAR_0_NOTIFIED": 1})
        lost = "std_sync_Condvar_notify_0_LOST"
        self.assertEqual(self.net.preset(lost), {"S4": 1})
        self.assertEqual(self.net.postset(lost), {"E4": 1})

    def test_notify_all_delivers_one_notification(self) -> None:
        self.assertIs(
            MirProgram([]).classify("std::sync::Condvar::notify_all"), CalleeKind.CONDVAR_NOTIFY
        )
        places = FunctionPlaces(self.net.add_place("S5"), self.net.add_place("E5"))
        deliver = self.condvars.translate_call_notify(places, Location(2), self.net, self.memory)
        self.assertEqual(self.net.preset(deliver.label), {"S5": 1, "CONDVAR_0_WAITING": 1})
        self.assertEqual(self.net.postset(deliver.label), {"E5": 1, "CONDVAR_0_NOTIFIED": 1})

class TestCondvarProgram(unittest.TestCase):
    def setUp(self) -> None:
        self.net = translate(MirProgram.from_text(CONDVAR_MIR))

    def test_thread_reaches_tuple_fields_behind_arc(self) -> None:
        self.assertNotIn("MUTEX_1_UNLOCKED", self.net.places)
        self.assertNotIn("CONDVAR_1_WAITING", self.net.places)
        self.assertEqual(
            self.net.preset("std_sync_Mutex_lock_1"),
            {"main_closure_0_BASIC_BLOCK_END_PLACE_1": 1, "MUTEX_0_UNLOCKED": 1},
        )
        self.assertEqual(
            self.net.preset("std_sync_Condvar_notify_0"),
            {"main_closure_0_BASIC_BLOCK_END_PLACE_3": 1, "CONDVAR_0_WAITING": 1},
        )

    def test_wait_in_main_releases_the_shared_mutex(self) -> None:
        self.assertEqual(
            self.net.preset("std_sync_Condvar_wait_0"),
            {"main_BASIC_BLOCK_END_PLACE_8": 1, "MUTEX_0_LOCKED": 1},
        )
        self.assertEqual(
            self.net.postset("main_DROP_10"), {"main_BASIC_BLOCK_11": 1, "MUTEX_0_UNLOCKED": 1}
        )

    def test_notified_waiter_reaches_the_end(self) -> None:
        markings = reachable_markings(self.net)
        self.assertIn({"PROGRAM_END": 1, "MUTEX_0_UNLOCKED": 1}, markings)

    def test_notify_before_wait_is_lost(self) -> None:
        dead = [
            m for m in reachable_markings(self.net)
            if not any(enabled(self.net, m, t) for t in self.net.transitions)
        ]
        self.assertIn(
            {
                "CONDVAR_WAIT_0_PARKED": 1,
                "CONDVAR_0_WAITING": 1,
                "MUTEX_0_UNLOCKED": 1,
                "THREAD_END_0": 1,
            },
            dead,
        )



class TestArc(unittest.TestCase):
    def test_clone_and_deref_keep_the_mutex(self) -> None:
        net = PetriNet()
        memory = Memory()
        manager = ArcManager()
        memory.mutexes.link(Location(4), MutexRef(0))
        places = [FunctionPlaces(net.add_place(f"S{i}"), net.add_place(f"E{i}")) for i in range(2)]

        clone = manager.translate_call(
            CalleeKind.ARC_CLONE, places[0], Location(4), Location(3), net, memory
        )
        deref = manager.translate_call(
            CalleeKind.ARC_DEREF, places[1], Location(3), Location(5), net, memory
        )
        self.assertEqual(clone.label, "std_sync_Arc_clone_0")
        self.assertEqual(deref.label, "std_sync_Arc_deref_0")
        self.assertEqual(memory.mutexes.get(Location(3)), MutexRef(0))
        self.assertEqual(memory.mutexes.get(Location(5).deref()), MutexRef(0))


if __name__ == "__main__":
    unittest.main()
