import asyncio
import random
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from llmchess_coach.errors import DifficultyLocked, GameIsOver, IllegalMove, InvalidDifficulty, TurnNotYours
from llmchess_coach.fallback_policies import FirstLegalPolicy, RandomLegalPolicy
from llmchess_coach.game import GameConfig, GameSession
from llmchess_coach.session import MoveRequest, TerminalKind, TurnState


def make_session(move_replies=(), analysis="Solid position.", chat="Develop your pieces.", fallback=None, **cfg_kwargs):
    moves = AsyncMock()
    moves.suggest_move.side_effect = list(move_replies)
    analysis_p = AsyncMock()
    analysis_p.analyze.return_value = analysis
    chat_p = AsyncMock()
    chat_p.reply.return_value = chat
    cfg_kwargs.setdefault("difficulty", 1500)
    cfg = GameConfig(ai_move_delay_s=0, **cfg_kwargs)
    session = GameSession(moves, analysis_p, chat_p, cfg=cfg, fallback=fallback or FirstLegalPolicy())
    return session, moves, analysis_p, chat_p


async def spin_until(predicate, rounds: int = 200):
    for _ in range(rounds):
        if predicate():
            return True
        await asyncio.sleep(0)
    return predicate()


class TurnSequencingTests(unittest.IsolatedAsyncioTestCase):
    async def test_human_move_then_ai_reply(self):
        session, moves, _, _ = make_session(["Nf6"])

        record = await session.submit_human_move(MoveRequest("e2", "e4"))

        self.assertEqual(record.san, "e4")
        self.assertEqual([r.san for r in session.state.history], ["e4"])
        self.assertIs(session.state.turn, TurnState.AI_TURN_IN_FLIGHT)

        await session.wait_idle()

        self.assertEqual([r.san for r in session.state.history], ["e4", "Nf6"])
        self.assertIs(session.state.turn, TurnState.HUMAN_TO_MOVE)
        self.assertEqual(session.state.history[-1].source, "provider")
        self.assertFalse(session.state.ai_thinking)
        position, difficulty = moves.suggest_move.await_args.args
        self.assertEqual(position.side_to_move, "black")
        self.assertEqual(difficulty, 1500)

    async def test_illegal_human_move_is_rejected_without_mutation(self):
        session, moves, _, _ = make_session()
        before = session.state

        with self.assertRaises(IllegalMove):
            await session.submit_human_move(MoveRequest("e2", "e5"))

        self.assertIs(session.state, before)
        self.assertEqual(session.state.history, ())
        self.assertIs(session.state.turn, TurnState.HUMAN_TO_MOVE)
        moves.suggest_move.assert_not_awaited()

    async def test_malformed_square_is_illegal(self):
        session, _, _, _ = make_session()
        with self.assertRaises(IllegalMove):
            await session.submit_human_move(MoveRequest("z9", "e4"))

    async def test_submission_during_ai_turn_never_mutates_state(self):
        session, _, _, _ = make_session(["e5"])
        await session.submit_human_move("e2e4")
        in_flight = session.state

        with self.assertRaises(TurnNotYours):
            await session.submit_human_move("d2d4")

        self.assertIs(session.state, in_flight)
        await session.wait_idle()
        self.assertEqual([r.san for r in session.state.history], ["e4", "e5"])

    async def test_uci_string_accepted_as_move(self):
        session, _, _, _ = make_session(["e5"])
        record = await session.submit_human_move("g1f3")
        self.assertEqual(record.san, "Nf3")
        await session.wait_idle()

    async def test_missing_promotion_defaults_to_queen(self):
        session, _, _, _ = make_session([None], start_fen="8/P7/8/8/8/8/k7/7K w - - 0 1", analyze_moves=False)

        record = await session.submit_human_move(MoveRequest("a7", "a8"))

        self.assertEqual(record.uci, "a7a8q")
        self.assertTrue(record.san.startswith("a8=Q"))
        await session.wait_idle()

    async def test_human_playing_black_waits_for_ai_first_move(self):
        session, moves, _, _ = make_session(["e4"], human_color="black")
        self.assertIs(session.state.turn, TurnState.AI_TURN_IN_FLIGHT)

        await session.start()
        await session.start()  # second call must not queue another AI turn
        await session.wait_idle()

        self.assertEqual([r.san for r in session.state.history], ["e4"])
        self.assertIs(session.state.turn, TurnState.HUMAN_TO_MOVE)
        self.assertEqual(moves.suggest_move.await_count, 1)


class FallbackTests(unittest.IsolatedAsyncioTestCase):
    async def test_provider_failure_applies_exactly_one_legal_move(self):
        session, _, _, _ = make_session([None])
        await session.submit_human_move("e2e4")
        await session.wait_idle()

        history = session.state.history
        self.assertEqual(len(history), 2)
        self.assertEqual(history[-1].actor, "ai")
        self.assertEqual(history[-1].source, "fallback")
        self.assertEqual(history[-1].note, "provider_failure")
        self.assertIs(session.state.turn, TurnState.HUMAN_TO_MOVE)
        m = session.metrics()
        self.assertEqual(m["ai_provider_failures"], 1)
        self.assertEqual(m["ai_fallback_moves"], 1)

    async def test_illegal_suggestion_never_recorded(self):
        session, _, _, _ = make_session(["Qxh7"])
        await session.submit_human_move("e2e4")
        await session.wait_idle()

        history = session.state.history
        self.assertEqual(len(history), 2)
        self.assertNotEqual(history[-1].san, "Qxh7")
        self.assertEqual(history[-1].note, "illegal_suggestion")
        self.assertEqual(session.metrics()["ai_illegal_suggestions"], 1)

    async def test_white_move_for_black_is_illegal_suggestion(self):
        session, _, _, _ = make_session(["Nf3"])
        await session.submit_human_move("e2e4")
        await session.wait_idle()
        self.assertEqual(session.state.history[-1].source, "fallback")

    async def test_provider_exception_is_absorbed(self):
        session, moves, _, _ = make_session()
        moves.suggest_move.side_effect = RuntimeError("boom")
        await session.submit_human_move("d2d4")
        await session.wait_idle()
        self.assertEqual(len(session.state.history), 2)
        self.assertIs(session.state.turn, TurnState.HUMAN_TO_MOVE)

    async def test_null_move_token_falls_back(self):
        for token in ("--", "Z0", "0000", "@@@@"):
            with self.subTest(token=token):
                session, _, _, _ = make_session([token])
                await session.submit_human_move("e2e4")
                await session.wait_idle()

                history = session.state.history
                self.assertEqual(len(history), 2)
                self.assertEqual(history[-1].source, "fallback")
                self.assertEqual(history[-1].note, "illegal_suggestion")
                self.assertIs(session.state.turn, TurnState.HUMAN_TO_MOVE)
                self.assertFalse(session.state.ai_thinking)

    async def test_parser_error_falls_back(self):
        session, _, _, _ = make_session(["e5"])
        with patch("llmchess_coach.game.parse_ai_move", side_effect=RuntimeError("parser exploded")):
            await session.submit_human_move("e2e4")
            await session.wait_idle()

        self.assertEqual(session.state.history[-1].source, "fallback")
        self.assertEqual(session.metrics()["ai_illegal_suggestions"], 1)
        self.assertIs(session.state.turn, TurnState.HUMAN_TO_MOVE)

    async def test_failed_fallback_releases_turn_for_retry(self):
        broken = MagicMock()
        broken.choose.side_effect = RuntimeError("no move")
        session, moves, _, _ = make_session([None, None], fallback=broken)
        await session.submit_human_move("e2e4")
        await session.wait_idle()

        self.assertEqual(len(session.state.history), 1)
        self.assertFalse(session.state.ai_thinking)
        self.assertIs(session.state.turn, TurnState.AI_TURN_IN_FLIGHT)

        session.fallback = FirstLegalPolicy()
        await session.start()
        await session.wait_idle()

        self.assertEqual(len(session.state.history), 2)
        self.assertIs(session.state.turn, TurnState.HUMAN_TO_MOVE)
        self.assertEqual(moves.suggest_move.await_count, 2)

    async def test_history_replays_to_position_after_many_fallbacks(self):
        rng = random.Random(7)
        session, moves, _, _ = make_session(fallback=RandomLegalPolicy(rng=random.Random(3)), analyze_moves=False)
        moves.suggest_move.side_effect = None
        moves.suggest_move.return_value = None
        for _ in range(12):
            if session.state.turn is not TurnState.HUMAN_TO_MOVE:
                break
            board = session.referee.board(session.state.position)
            mv = rng.choice(list(board.legal_moves))
            await session.submit_human_move(mv.uci())
            await session.wait_idle()

        check = session.verify_history()
        self.assertTrue(check["ok"], check)
        self.assertEqual(len(session.state.position.moves), len(session.state.history))


class GameOverTests(unittest.IsolatedAsyncioTestCase):
    async def test_checkmate_ends_game_but_chat_continues(self):
        session, moves, _, chat_p = make_session(["e5", "Nc6", "Nf6"])
        for uci in ("e2e4", "f1c4", "d1h5"):
            await session.submit_human_move(uci)
            await session.wait_idle()

        await session.submit_human_move("h5f7")
        await session.wait_idle()

        state = session.state
        self.assertEqual(state.history[-1].san, "Qxf7#")
        self.assertIs(state.turn, TurnState.GAME_OVER)
        self.assertIs(state.terminal.kind, TerminalKind.CHECKMATE)
        self.assertEqual(state.terminal.winner, "white")
        self.assertEqual(state.chat_log[-1].text, "Game Over. Checkmate! White wins.")
        self.assertEqual(moves.suggest_move.await_count, 3)

        with self.assertRaises(GameIsOver):
            await session.submit_human_move("a2a3")

        reply = await session.send_chat_message("How did I do?")
        self.assertEqual(reply, "Develop your pieces.")
        self.assertEqual(session.state.chat_log[-1].role, "assistant")
        chat_p.reply.assert_awaited()
        self.assertEqual(session.metrics()["result"], "1-0")

    async def test_ai_checkmate_ends_game(self):
        session, _, _, _ = make_session(["e5", "Qh4#"])
        await session.submit_human_move("f2f3")
        await session.wait_idle()
        await session.submit_human_move("g2g4")
        await session.wait_idle()

        self.assertIs(session.state.turn, TurnState.GAME_OVER)
        self.assertEqual(session.state.terminal.winner, "black")
        self.assertIn("Termination: checkmate", session.export_pgn())

    async def test_stalemate_ends_game_as_draw(self):
        session, moves, _, _ = make_session(start_fen="7k/8/6K1/8/8/8/8/5Q2 w - - 0 1")

        await session.submit_human_move("f1f7")
        await session.wait_idle()

        state = session.state
        self.assertIs(state.turn, TurnState.GAME_OVER)
        self.assertIs(state.terminal.kind, TerminalKind.DRAW)
        self.assertEqual(state.terminal.reason, "stalemate")
        self.assertEqual(state.chat_log[-1].text, "Game Over. Draw by stalemate.")
        self.assertEqual(session.metrics()["result"], "1/2-1/2")
        moves.suggest_move.assert_not_awaited()
        with self.assertRaises(GameIsOver):
            await session.submit_human_move("g6h6")


class AnalysisTests(unittest.IsolatedAsyncioTestCase):
    async def test_analysis_updates_after_each_move(self):
        session, _, analysis_p, _ = make_session(["e5"])
        await session.submit_human_move("e2e4")
        await session.wait_idle()

        self.assertEqual(session.state.analysis, "Solid position.")
        self.assertEqual(analysis_p.analyze.await_count, 2)
        position, recent, difficulty = analysis_p.analyze.await_args.args
        self.assertEqual(recent, ["e4", "e5"])
        self.assertEqual(position.fen, session.state.position.fen)

    async def test_stale_analysis_does_not_overwrite_newer_one(self):
        session, _, analysis_p, _ = make_session(["e5"])
        gate = asyncio.Event()

        async def analyze(position, recent, difficulty):
            if len(recent) == 1:
                await gate.wait()
                return "analysis for ply 1"
            return "analysis for ply 2"

        analysis_p.analyze.side_effect = analyze
        await session.submit_human_move("e2e4")
        self.assertTrue(await spin_until(lambda: session.state.analysis == "analysis for ply 2"))

        gate.set()
        await session.wait_idle()

        self.assertEqual(session.state.analysis, "analysis for ply 2")
        self.assertGreaterEqual(session.metrics()["stale_responses_discarded"], 1)

    async def test_analysis_window_is_bounded(self):
        session, _, analysis_p, _ = make_session(["e5", "Nc6", "Nf6"], analysis_history_plies=3)
        for uci in ("e2e4", "g1f3", "f1c4"):
            await session.submit_human_move(uci)
            await session.wait_idle()
        _, recent, _ = analysis_p.analyze.await_args.args
        self.assertEqual(recent, ["Nc6", "Bc4", "Nf6"])


class ChatAndSettingsTests(unittest.IsolatedAsyncioTestCase):
    async def test_hostile_message_routes_to_roast(self):
        session, _, _, chat_p = make_session()
        await session.send_chat_message("You play like an IDIOT")
        self.assertTrue(chat_p.reply.await_args.kwargs["hostile"])

        await session.send_chat_message("What is a fork?")
        self.assertFalse(chat_p.reply.await_args.kwargs["hostile"])

        roles = [m.role for m in session.state.chat_log]
        self.assertEqual(roles, ["user", "assistant", "user", "assistant"])

    async def test_blank_chat_is_ignored(self):
        session, _, _, chat_p = make_session()
        self.assertIsNone(await session.send_chat_message("   "))
        self.assertEqual(session.state.chat_log, ())
        chat_p.reply.assert_not_awaited()

    async def test_difficulty_locked_during_ai_turn(self):
        session, _, _, _ = make_session(["e5"])
        await session.submit_human_move("e2e4")
        with self.assertRaises(DifficultyLocked):
            await session.set_difficulty(2000)
        await session.wait_idle()

        history = session.state.history
        self.assertEqual(await session.set_difficulty(2000), 2000)
        self.assertEqual(session.state.history, history)
        with self.assertRaises(InvalidDifficulty):
            await session.set_difficulty(50)
        with self.assertRaises(InvalidDifficulty):
            await session.set_difficulty("strong")

    async def test_new_game_discards_in_flight_ai_move(self):
        session, moves, _, _ = make_session()
        gate = asyncio.Event()

        async def slow_move(position, difficulty):
            await gate.wait()
            return "e5"

        moves.suggest_move.side_effect = slow_move
        await session.submit_human_move("e2e4")
        self.assertTrue(await spin_until(lambda: session.state.ai_thinking))
        old_id = session.state.session_id

        snap = await session.new_game(difficulty=900)
        gate.set()
        await session.wait_idle()

        self.assertNotEqual(session.state.session_id, old_id)
        self.assertEqual(session.state.history, ())
        self.assertIs(session.state.turn, TurnState.HUMAN_TO_MOVE)
        self.assertEqual(snap.difficulty, 900)
        self.assertEqual(session.metrics()["stale_responses_discarded"], 1)

    async def test_chat_reply_in_flight_across_new_game_is_discarded(self):
        session, _, _, chat_p = make_session()
        gate = asyncio.Event()

        async def slow_reply(message, position, difficulty, hostile=False):
            await gate.wait()
            return "Old advice."

        chat_p.reply.side_effect = slow_reply
        pending = asyncio.ensure_future(session.send_chat_message("Should I castle?"))
        self.assertTrue(await spin_until(lambda: chat_p.reply.await_count == 1))

        await session.new_game()
        gate.set()
        reply = await pending

        self.assertIsNone(reply)
        self.assertEqual(session.state.chat_log, ())
        self.assertEqual(session.metrics()["stale_responses_discarded"], 1)

    async def test_snapshot_legal_destinations(self):
        session, _, _, _ = make_session(["e5"])
        snap = session.snapshot("e2")
        self.assertEqual(snap.legal_destinations, ("e3", "e4"))
        self.assertEqual(session.snapshot("g1").legal_destinations, ("f3", "h3"))
        self.assertEqual(session.snapshot("e7").legal_destinations, ())

        await session.submit_human_move("e2e4")
        self.assertEqual(session.snapshot("d2").legal_destinations, ())
        await session.wait_idle()

        data = session.snapshot().to_dict()
        self.assertEqual(data["history"], ["e4", "e5"])
        self.assertEqual(data["turn"], "human_to_move")
        self.assertEqual(data["ply"], 2)


if __name__ == "__main__":
    unittest.main()
