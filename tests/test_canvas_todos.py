"""
Unit tests for Canvas to-do normalization, window filtering and fetching.
"""

import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import requests

from canvas_todos import (
    DEFAULT_TITLE,
    NormalizedTodo,
    RemoteFetchError,
    build_cid,
    build_notes,
    fetch_canvas_todos,
    filter_by_window,
    normalize_todo,
    normalize_todos,
    to_iso_due,
)


class TestBuildCid(unittest.TestCase):
    """Test the content id precedence rules."""

    def test_assignment_id_wins_over_urls(self):
        todo = {
            'assignment': {'id': 42, 'name': 'Essay', 'html_url': 'https://canvas.test/courses/1/assignments/42'},
            'html_url': 'https://canvas.test/courses/1/assignments/42#submit',
        }
        self.assertEqual(build_cid(todo), 'A:42')

    def test_assignment_id_zero_is_still_an_id(self):
        self.assertEqual(build_cid({'assignment': {'id': 0, 'name': 'Intro'}}), 'A:0')

    def test_assignment_id_ignores_title_and_due_edits(self):
        before = {'assignment': {'id': 7, 'name': 'Lab 1', 'due_at': '2025-03-01T23:59:00Z'}}
        after = {'assignment': {'id': 7, 'name': 'Lab 1 (revised)', 'due_at': '2025-03-08T23:59:00Z'},
                 'context_name': 'Chemistry'}
        self.assertEqual(build_cid(before), build_cid(after))

    def test_direct_url_when_no_assignment_id(self):
        todo = {'html_url': 'https://canvas.test/quizzes/3', 'title': 'Quiz 3'}
        self.assertEqual(build_cid(todo), 'U:https://canvas.test/quizzes/3')

    def test_assignment_url_when_no_direct_url(self):
        todo = {'assignment': {'name': 'Lab', 'html_url': 'https://canvas.test/a/9'}}
        self.assertEqual(build_cid(todo), 'U:https://canvas.test/a/9')

    def test_fallback_uses_title_and_raw_due(self):
        todo = {'title': 'Read chapter 3', 'due_at': '2025-03-01'}
        self.assertEqual(build_cid(todo), 'FALLBACK:Read chapter 3:2025-03-01')

    def test_fallback_prefers_assignment_fields(self):
        todo = {
            'assignment': {'name': 'Homework', 'due_at': '2025-01-10T10:00:00Z'},
            'title': 'Other title',
            'due_at': '2025-02-01',
        }
        self.assertEqual(build_cid(todo), 'FALLBACK:Homework:2025-01-10T10:00:00Z')

    def test_fallback_for_empty_item(self):
        self.assertEqual(build_cid({}), 'FALLBACK:untitled:')

    def test_surrounding_whitespace_is_trimmed(self):
        self.assertEqual(build_cid({'html_url': ' https://canvas.test/q/1 '}), 'U:https://canvas.test/q/1')
        self.assertEqual(build_cid({'title': 'Quiz ', 'due_at': '2025-03-01 '}), 'FALLBACK:Quiz:2025-03-01')
        self.assertEqual(build_cid({'html_url': '   ', 'title': 'Quiz'}), 'FALLBACK:Quiz:')

    def test_line_breaks_are_folded(self):
        self.assertEqual(build_cid({'title': 'Lab\r\nreport\n'}), 'FALLBACK:Lab report:')
        self.assertEqual(build_cid({'assignment': {'id': '42\n'}}), 'A:42')


class TestToIsoDue(unittest.TestCase):
    """Test due date normalization."""

    def test_missing_values(self):
        self.assertIsNone(to_iso_due(None))
        self.assertIsNone(to_iso_due(''))

    def test_date_only_becomes_midnight_utc(self):
        self.assertEqual(to_iso_due('2025-03-01'), '2025-03-01T00:00:00.000Z')

    def test_utc_timestamp(self):
        self.assertEqual(to_iso_due('2025-03-01T23:59:00Z'), '2025-03-01T23:59:00.000Z')

    def test_offset_is_converted_to_utc(self):
        self.assertEqual(to_iso_due('2025-03-01T18:59:00-05:00'), '2025-03-01T23:59:00.000Z')

    def test_sub_millisecond_precision_is_truncated(self):
        self.assertEqual(to_iso_due('2025-03-01T12:00:00.123456Z'), '2025-03-01T12:00:00.123Z')

    def test_early_years_are_zero_padded(self):
        self.assertEqual(to_iso_due('0999-06-01'), '0999-06-01T00:00:00.000Z')
        self.assertEqual(to_iso_due('0045-01-02T03:04:05Z'), '0045-01-02T03:04:05.000Z')

    def test_naive_timestamp_is_utc(self):
        self.assertEqual(to_iso_due('2025-03-01T10:00:00'), '2025-03-01T10:00:00.000Z')

    def test_unparseable_values_give_none(self):
        self.assertIsNone(to_iso_due('not a date'))
        self.assertIsNone(to_iso_due('2025-02-30'))
        self.assertIsNone(to_iso_due('2025-13-01T00:00:00Z'))

    def test_normalizing_twice_gives_same_value(self):
        for value in ('2025-03-01', '2025-03-01T18:59:00-05:00', '2025-03-01T12:00:00.5Z', '0999-06-01'):
            once = to_iso_due(value)
            self.assertEqual(to_iso_due(once), once)


class TestNormalizeTodos(unittest.TestCase):
    """Test building normalized records from raw Canvas items."""

    def test_assignment_scenario(self):
        todo = normalize_todo({'assignment': {'id': 42, 'name': 'Essay', 'due_at': '2025-03-01'}})

        self.assertEqual(todo.cid, 'A:42')
        self.assertEqual(todo.title, 'Essay')
        self.assertEqual(todo.due, '2025-03-01T00:00:00.000Z')
        self.assertEqual(todo.notes, 'CID: A:42\nSource: Canvas')

    def test_notes_include_course_and_assignment_url(self):
        raw = {
            'assignment': {'id': 7, 'name': 'Lab', 'html_url': 'https://canvas.test/a/7'},
            'html_url': 'https://canvas.test/todo/7',
            'context_name': 'Biology 101',
        }
        self.assertEqual(
            build_notes('A:7', raw),
            'CID: A:7\nSource: Canvas\nCourse: Biology 101\nURL: https://canvas.test/a/7',
        )

    def test_notes_fall_back_to_direct_url(self):
        raw = {'html_url': 'https://canvas.test/quizzes/3'}
        self.assertEqual(
            build_notes('U:https://canvas.test/quizzes/3', raw),
            'CID: U:https://canvas.test/quizzes/3\nSource: Canvas\nURL: https://canvas.test/quizzes/3',
        )

    def test_title_fallbacks(self):
        self.assertEqual(normalize_todo({'title': 'Discussion'}).title, 'Discussion')
        self.assertEqual(normalize_todo({'html_url': 'https://canvas.test/x'}).title, DEFAULT_TITLE)
        self.assertEqual(DEFAULT_TITLE, 'Canvas To-Do')

    def test_null_assignment_due_falls_back_to_item_due(self):
        todo = normalize_todo({'assignment': {'id': 1, 'name': 'A', 'due_at': None}, 'due_at': '2025-04-01'})
        self.assertEqual(todo.due, '2025-04-01T00:00:00.000Z')

    def test_never_drops_items(self):
        raw = [
            {},
            {'assignment': {'id': 1}},
            {'title': 'Bad date', 'due_at': 'tomorrow-ish'},
            {'assignment': None, 'html_url': 'https://canvas.test/x'},
        ]
        normalized = normalize_todos(raw)

        self.assertEqual(len(normalized), len(raw))
        self.assertIsNone(normalized[2].due)
        for todo in normalized:
            self.assertTrue(todo.title)
            self.assertTrue(todo.notes.startswith(f"CID: {todo.cid}\n"))


class TestFilterByWindow(unittest.TestCase):
    """Test the look-ahead window."""

    def setUp(self):
        self.now = datetime(2025, 2, 15, tzinfo=timezone.utc)

    def _todo(self, cid, due):
        return NormalizedTodo(cid=cid, title=cid, due=due, notes=f"CID: {cid}")

    def test_scenario_item_is_included(self):
        todo = normalize_todo({'assignment': {'id': 42, 'name': 'Essay', 'due_at': '2025-03-01'}})
        self.assertEqual(filter_by_window([todo], 30, now=self.now), [todo])

    def test_end_boundary_is_inclusive_to_the_millisecond(self):
        end = self.now + timedelta(days=30)
        at_end = self._todo('end', end.strftime('%Y-%m-%dT%H:%M:%S.000Z'))
        after_end = self._todo('late', (end + timedelta(milliseconds=1)).strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z')

        self.assertEqual(filter_by_window([at_end, after_end], 30, now=self.now), [at_end])

    def test_start_boundary_is_inclusive(self):
        at_now = self._todo('now', '2025-02-15T00:00:00.000Z')
        before = self._todo('past', '2025-02-14T23:59:59.999Z')

        self.assertEqual(filter_by_window([before, at_now], 30, now=self.now), [at_now])

    def test_undated_items_are_excluded(self):
        undated = self._todo('undated', None)
        self.assertEqual(filter_by_window([undated], 10000, now=self.now), [])

    def test_zero_day_window(self):
        at_now = self._todo('now', '2025-02-15T00:00:00.000Z')
        later = self._todo('later', '2025-02-15T00:00:00.001Z')
        self.assertEqual(filter_by_window([at_now, later], 0, now=self.now), [at_now])

    def test_input_order_is_kept(self):
        todos = [
            self._todo('c', '2025-03-10T00:00:00.000Z'),
            self._todo('a', '2025-02-20T00:00:00.000Z'),
            self._todo('b', '2025-03-01T00:00:00.000Z'),
        ]
        self.assertEqual([t.cid for t in filter_by_window(todos, 30, now=self.now)], ['c', 'a', 'b'])

    def test_defaults_to_current_time(self):
        soon = datetime.now(timezone.utc) + timedelta(days=1)
        todo = self._todo('soon', soon.strftime('%Y-%m-%dT%H:%M:%S.000Z'))
        self.assertEqual(filter_by_window([todo], 30), [todo])


class TestFetchCanvasTodos(unittest.TestCase):
    """Test the Canvas to-do request with a mocked session."""

    def _response(self, payload, status_code=200, next_url=None):
        response = MagicMock()
        response.ok = 200 <= status_code < 300
        response.status_code = status_code
        response.json.return_value = payload
        response.links = {'next': {'url': next_url}} if next_url else {}
        return response

    def test_single_page(self):
        session = MagicMock()
        session.get.return_value = self._response([{'assignment': {'id': 1}}])

        todos = fetch_canvas_todos('https://canvas.test/', 'secret', session=session)

        self.assertEqual(todos, [{'assignment': {'id': 1}}])
        session.get.assert_called_once_with(
            'https://canvas.test/api/v1/users/self/todo',
            headers={'Authorization': 'Bearer secret'},
            params={'per_page': 100},
            timeout=30,
        )

    def test_follows_next_links(self):
        next_url = 'https://canvas.test/api/v1/users/self/todo?page=2&per_page=100'
        session = MagicMock()
        session.get.side_effect = [
            self._response([{'title': 'one'}], next_url=next_url),
            self._response([{'title': 'two'}]),
        ]

        todos = fetch_canvas_todos('https://canvas.test', 'secret', session=session)

        self.assertEqual([t['title'] for t in todos], ['one', 'two'])
        second_call = session.get.call_args_list[1]
        self.assertEqual(second_call.args[0], next_url)
        self.assertIsNone(second_call.kwargs['params'])

    def test_error_status_raises_with_code(self):
        session = MagicMock()
        session.get.return_value = self._response({'errors': []}, status_code=401)

        with self.assertRaises(RemoteFetchError) as ctx:
            fetch_canvas_todos('https://canvas.test', 'bad', session=session)
        self.assertEqual(ctx.exception.status_code, 401)
        self.assertIn('401', str(ctx.exception))

    def test_connection_error_is_wrapped(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError('unreachable')

        with self.assertRaises(RemoteFetchError) as ctx:
            fetch_canvas_todos('https://canvas.test', 'secret', session=session)
        self.assertIsNone(ctx.exception.status_code)

    def test_empty_list(self):
        session = MagicMock()
        session.get.return_value = self._response([])
        self.assertEqual(fetch_canvas_todos('https://canvas.test', 'secret', session=session), [])


if __name__ == '__main__':
    unittest.main()
