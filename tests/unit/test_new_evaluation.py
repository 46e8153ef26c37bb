"""
Unit Tests for the New-Evaluation Client Flow

The HTTP side uses httpx.MockTransport; no server is started.
"""

import asyncio
import json
import httpx
import pytest


class TestNewEvaluationForm:
    """Tests for the form's selection rules."""

    def test_defaults(self):
        from src.console.new_evaluation import NewEvaluationForm, DEFAULT_MODELS

        form = NewEvaluationForm()

        assert form.models == DEFAULT_MODELS
        assert form.can_start is False

    def test_more_than_three_models_rejected(self):
        """A fourth model is refused and the previous selection kept."""
        from src.console.new_evaluation import NewEvaluationForm

        form = NewEvaluationForm("ds_1", ["a", "b", "c"], "cl_1")

        with pytest.raises(ValueError):
            form.set_models(["a", "b", "c", "d"])

        assert form.models == ["a", "b", "c"]

    def test_can_start_needs_everything(self):
        from src.console.new_evaluation import NewEvaluationForm

        assert NewEvaluationForm("ds_1", ["a"], "cl_1").can_start is True
        assert NewEvaluationForm(None, ["a"], "cl_1").can_start is False
        assert NewEvaluationForm("ds_1", [], "cl_1").can_start is False
        assert NewEvaluationForm("ds_1", ["a"], None).can_start is False

    def test_time_estimate_scales_with_models(self):
        from src.console.new_evaluation import NewEvaluationForm, SECONDS_PER_MODEL

        assert NewEvaluationForm("ds", ["a"], "cl").time_estimate == SECONDS_PER_MODEL
        assert NewEvaluationForm("ds", ["a", "b", "c"], "cl").time_estimate == 3 * SECONDS_PER_MODEL

    def test_payload(self):
        from src.console.new_evaluation import NewEvaluationForm

        payload = NewEvaluationForm("ds_1", ["gpt-3.5-turbo"], "cl_1").payload()

        assert payload == {"datasetId": "ds_1", "models": ["gpt-3.5-turbo"], "checklistId": "cl_1"}


class TestProgressSimulator:
    """Tests for the cosmetic progress counter."""

    def test_rejects_non_positive_estimate(self):
        from src.console.new_evaluation import ProgressSimulator

        with pytest.raises(ValueError):
            ProgressSimulator(0)

    @pytest.mark.asyncio
    async def test_ticks_and_caps_at_100(self):
        from src.console.new_evaluation import ProgressSimulator

        seen = []
        simulator = ProgressSimulator(4, interval=0.01, on_progress=seen.append)

        simulator.start()
        await asyncio.sleep(0.2)
        assert simulator.running is True
        await simulator.stop()

        assert seen[:4] == [25.0, 50.0, 75.0, 100.0]
        assert max(seen) == 100.0
        assert simulator.progress == 100.0
        assert simulator.running is False

    @pytest.mark.asyncio
    async def test_stop_freezes_progress(self):
        from src.console.new_evaluation import ProgressSimulator

        async with ProgressSimulator(1000, interval=0.01) as simulator:
            await asyncio.sleep(0.05)

        frozen = simulator.progress
        await asyncio.sleep(0.05)

        assert simulator.progress == frozen
        assert frozen < 100.0

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        from src.console.new_evaluation import ProgressSimulator

        simulator = ProgressSimulator(10)
        await simulator.stop()

        assert simulator.progress == 0.0


class TestStartEvaluation:
    """Tests for submitting the form."""

    @pytest.mark.asyncio
    async def test_posts_form_and_returns_id(self):
        from src.console.new_evaluation import NewEvaluationForm, start_evaluation, results_path

        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(201, json={"evaluationId": "ev_1"})

        form = NewEvaluationForm("ds_1", ["gpt-3.5-turbo", "claude-2"], "cl_1")
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test") as client:
            evaluation_id = await start_evaluation(client, "proj_1", form, interval=0.01)

        assert evaluation_id == "ev_1"
        assert results_path(evaluation_id) == "/evaluations/ev_1"
        assert len(requests) == 1
        assert requests[0].method == "POST"
        assert requests[0].url.path == "/v1/evaluations"
        assert requests[0].url.params["projectId"] == "proj_1"
        assert json.loads(requests[0].content) == form.payload()

    @pytest.mark.asyncio
    async def test_missing_id_returns_none(self):
        from src.console.new_evaluation import NewEvaluationForm, start_evaluation

        transport = httpx.MockTransport(lambda request: httpx.Response(201, json={}))
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            evaluation_id = await start_evaluation(client, "proj_1", NewEvaluationForm("ds", ["a"], "cl"))

        assert evaluation_id is None

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        from src.console.new_evaluation import NewEvaluationForm, start_evaluation

        transport = httpx.MockTransport(lambda request: httpx.Response(404, json={"message": "Dataset not found"}))
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            with pytest.raises(httpx.HTTPStatusError):
                await start_evaluation(client, "proj_1", NewEvaluationForm("ds", ["a"], "cl"))

    @pytest.mark.asyncio
    async def test_incomplete_form_sends_nothing(self):
        from src.console.new_evaluation import NewEvaluationForm, start_evaluation

        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(201, json={"evaluationId": "ev_1"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test") as client:
            with pytest.raises(ValueError):
                await start_evaluation(client, "proj_1", NewEvaluationForm("ds_1", ["a"], None))

        assert requests == []
