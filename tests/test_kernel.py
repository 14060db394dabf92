"""
Tests for NotebookKernel.
"""

from stepnb.coordinator import ExecutionCoordinator
from stepnb.kernel import Delay, ExecutionResult, NotebookKernel, split_statements
from stepnb.notebook import Cell, Notebook
from stepnb.outputs import DisplayDataOutput, ErrorOutput, ExecuteResultOutput, StreamOutput


class TestNotebookKernel:
    """Test cases for NotebookKernel."""

    def test_execute_simple_code(self, kernel):
        """Test executing simple code."""
        result = kernel.execute("x = 42")

        assert isinstance(result, ExecutionResult)
        assert result.success
        assert result.outputs == []
        assert result.execution_count == 1

    def test_variables_persist(self, kernel):
        """Test that variables persist across executions."""
        kernel.execute("x = 42")
        kernel.execute("y = x + 8")

        assert kernel.get_variable("x") == 42
        assert kernel.get_variable("y") == 50

    def test_stdout_captured(self, kernel):
        result = kernel.execute('print("Hello, World!")')

        assert result.success
        assert len(result.outputs) == 1
        out = result.outputs[0]
        assert isinstance(out, StreamOutput)
        assert out.name == "stdout"
        assert out.content == "Hello, World!\n"

    def test_stderr_captured(self, kernel):
        result = kernel.execute("import sys\nsys.stderr.write('warn\\n')\nNone")
        streams = [o for o in result.outputs if isinstance(o, StreamOutput)]
        assert [s.name for s in streams] == ["stderr"]

    def test_final_expression_result(self, kernel):
        result = kernel.execute("2 + 2")

        out = result.outputs[0]
        assert isinstance(out, ExecuteResultOutput)
        assert out.get("text/plain").text == "4"
        assert out.execution_count == 1
        assert kernel.get_variable("_") == 4

    def test_only_last_expression_is_a_result(self, kernel):
        result = kernel.execute("1 + 1\n2 + 2")
        assert len(result.outputs) == 1
        assert result.outputs[0].get("text/plain").text == "4"

    def test_none_result_dropped(self, kernel):
        assert kernel.execute("None").outputs == []

    def test_error(self, kernel):
        result = kernel.execute("1 / 0")

        assert not result.success
        assert result.error == "ZeroDivisionError: division by zero"
        error = result.outputs[-1]
        assert isinstance(error, ErrorOutput)
        assert "ZeroDivisionError: division by zero" in error.traceback
        assert not any("stepnb" in line for line in error.traceback)

    def test_output_before_error_kept(self, kernel):
        result = kernel.execute("print('before')\nraise ValueError('bad')\nprint('after')")

        assert [type(o) for o in result.outputs] == [StreamOutput, ErrorOutput]
        assert result.outputs[0].content == "before\n"

    def test_syntax_error(self, kernel):
        result = kernel.execute("x = = 1")
        assert result.outputs[0].ename == "SyntaxError"

    def test_display_data(self, kernel):
        result = kernel.execute(
            "from IPython.display import HTML, display\n"
            "display(HTML('<b>hi</b>'))"
        )
        out = result.outputs[0]
        assert isinstance(out, DisplayDataOutput)
        assert out.get("text/html").text == "<b>hi</b>"

    def test_show_helper(self, kernel):
        result = kernel.execute("show('hello')")
        assert len(result.outputs) == 1
        assert result.outputs[0].get("text/plain").text == "hello"

    def test_execution_count_increments(self, kernel):
        kernel.execute("1")
        assert kernel.execute("2").execution_count == 2

    def test_trailing_semicolon_hides_result(self, kernel):
        result = kernel.execute("x = 3\nx * 2;")

        assert result.success
        assert result.outputs == []

    def test_shell_history_kept(self, kernel):
        kernel.execute("40 + 2")

        assert kernel.get_variable("In")[-1] == "40 + 2"
        assert 42 in kernel.get_variable("Out").values()

    def test_magics_run_through_shell(self, kernel):
        result = kernel.execute("x = 1\n%who_ls")

        assert result.success
        assert "'x'" in result.outputs[-1].get("text/plain").text


class TestStepping:
    """Statement-by-statement runs."""

    def test_outputs_arrive_per_statement(self, kernel):
        steps = kernel.run("print('a')\nprint('b')")

        first = next(steps)
        assert first.content == "a\n"
        second = next(steps)
        assert second.content == "b\n"

    def test_stop_before_next_statement(self, kernel):
        steps = kernel.run("a = 1\nprint('x')\nb = 2")
        assert next(steps).content == "x\n"

        kernel.stop()
        assert list(steps) == []
        assert kernel.get_variable("a") == 1
        assert kernel.get_variable("b") is None

    def test_sleep_yields_delay(self, kernel):
        items = list(kernel.run("sleep(0.5)\nprint('done')"))

        assert items[0] == Delay(0.5)
        assert items[1].content == "done\n"

    def test_interleaved_output_keeps_order(self, kernel):
        items = list(kernel.run(
            "for i in range(2):\n"
            "    print(i)\n"
            "    show('d%d' % i)\n"
        ))

        assert [type(item) for item in items] == [
            StreamOutput, DisplayDataOutput, StreamOutput, DisplayDataOutput,
        ]
        assert [items[0].content, items[2].content] == ["0\n", "1\n"]
        assert [items[1].get("text/plain").text, items[3].get("text/plain").text] == ["d0", "d1"]

    def test_stdout_and_stderr_interleaved(self, kernel):
        items = list(kernel.run(
            "import sys\n"
            "def both():\n"
            "    print('out')\n"
            "    print('err', file=sys.stderr)\n"
            "    print('out again')\n"
            "both()\n"
        ))

        assert [(item.name, item.content) for item in items] == [
            ("stdout", "out\n"), ("stderr", "err\n"), ("stdout", "out again\n"),
        ]

    def test_sleep_inside_loop_keeps_position(self, kernel):
        items = list(kernel.run("for i in range(2):\n    print(i)\n    sleep(1)"))

        assert [type(item) for item in items] == [StreamOutput, Delay, StreamOutput, Delay]


class TestSplitStatements:
    """Cells are cut into top-level statements."""

    def test_one_chunk_per_statement(self):
        assert split_statements("a = 1\nb = 2\n") == ["a = 1", "b = 2"]

    def test_shared_line_stays_together(self):
        assert split_statements("a = 1; b = 2\nc = 3") == ["a = 1; b = 2", "c = 3"]

    def test_decorators_and_comments_kept(self):
        source = "# helper\n@staticmethod\ndef f():\n    return 1\nf()"
        assert split_statements(source) == ["# helper\n@staticmethod\ndef f():\n    return 1", "f()"]

    def test_empty_source(self):
        assert split_statements("") == []


class TestNamespace:
    """Namespace helpers."""

    def test_set_variable(self, kernel):
        kernel.set_variable("z", 7)
        assert kernel.execute("z * 2").outputs[0].get("text/plain").text == "14"

    def test_defined_names(self, kernel):
        kernel.execute("alpha = 1\n_hidden = 2")
        names = kernel.get_defined_names()

        assert "alpha" in names
        assert "_hidden" not in names
        assert "show" not in names
        assert "sleep" not in names

    def test_reset(self, kernel):
        kernel.execute("x = 1")
        kernel.reset()

        assert kernel.get_variable("x") is None
        assert kernel.execution_count == 0
        assert kernel.get_variable("show") is not None


class TestWithCoordinator:
    """The kernel driven by the coordinator."""

    def test_execute_all(self, kernel, session):
        nb = Notebook.new()
        nb.cells = [Cell.from_text("x = 5\nprint(x)"), Cell.from_text("x * 2")]
        coordinator = ExecutionCoordinator(nb, session, kernel, sleep=lambda s: None)

        coordinator.execute_all()
        coordinator.run_until_idle()

        assert nb.cells[0].outputs[0].content == "5\n"
        result = nb.cells[1].outputs[0]
        assert result.get("text/plain").text == "10"
        assert result.execution_count == nb.cells[1].execution_count == 2

    def test_stop_through_coordinator(self, kernel, session):
        nb = Notebook.new()
        nb.cells = [Cell.from_text("print(1)\nprint(2)\nprint(3)")]
        coordinator = ExecutionCoordinator(nb, session, kernel)

        coordinator.execute_cell(0)
        coordinator.step()
        coordinator.stop()
        coordinator.run_until_idle()

        assert [o.content for o in nb.cells[0].outputs] == ["1\n"]
        assert kernel.get_variable("__notebook__") is True
