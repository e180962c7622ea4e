import threading

import numpy as np
import pytest
import torch

from a3c_trader.errors import GradientShapeError
from a3c_trader.models.actor_critic import NUM_ACTIONS, Action, ActorCriticNetwork, conv_output_length
from a3c_trader.models.predictor import Predictor
from a3c_trader.utils.concurrency import ReadWriteLock

INPUT_SIZE = 60


def _frame(seed: int = 0) -> np.ndarray:
    return 1.1 + 0.01 * np.random.default_rng(seed).standard_normal(INPUT_SIZE)


def _params(network):
    return {name: p.detach().clone() for name, p in network.named_parameters()}


def test_topology_shapes() -> None:
    network = ActorCriticNetwork(INPUT_SIZE)
    shapes = network.parameter_shapes()

    assert shapes["layer1.weight"] == (20, 1, 5)
    assert shapes["layer2.weight"] == (20, 20, 5)
    assert shapes["fc.weight"] == (100, 20 * conv_output_length(INPUT_SIZE))
    assert shapes["action_head.weight"] == (NUM_ACTIONS, 100)
    assert shapes["value_head.weight"] == (1, 100)
    assert NUM_ACTIONS == len(Action) == 4


def test_too_small_input_rejected() -> None:
    with pytest.raises(ValueError):
        ActorCriticNetwork(20)


def test_infer_contract() -> None:
    network = ActorCriticNetwork(INPUT_SIZE)
    probabilities, value = network.infer(_frame())

    assert probabilities.shape == (4,)
    assert np.all(probabilities >= 0)
    assert probabilities.sum() == pytest.approx(1.0, abs=1e-6)
    assert isinstance(value, float)


def test_infer_is_deterministic() -> None:
    network = ActorCriticNetwork(INPUT_SIZE)
    frame = _frame(3)

    p1, v1 = network.infer(frame)
    p2, v2 = network.infer(frame)
    p3, v3 = ActorCriticNetwork(INPUT_SIZE, seed=123).infer(frame)

    assert np.array_equal(p1, p2) and v1 == v2
    assert np.array_equal(p1, p3) and v1 == v3


def test_infer_rejects_wrong_frame_length() -> None:
    network = ActorCriticNetwork(INPUT_SIZE)
    with pytest.raises(ValueError):
        network.infer(np.ones(INPUT_SIZE + 1))


def test_backpropagate_leaves_parameters_untouched() -> None:
    network = ActorCriticNetwork(INPUT_SIZE)
    before = _params(network)

    gradient = network.backpropagate(_frame(), np.full(4, -0.5), np.array([2.0]))

    assert set(gradient) == set(before)
    for name, p in network.named_parameters():
        assert torch.equal(p, before[name])
        assert p.grad is None
        assert gradient[name].shape == p.shape


def test_value_error_reaches_value_head_only_at_the_top() -> None:
    network = ActorCriticNetwork(INPUT_SIZE)

    gradient = network.backpropagate(_frame(), np.zeros(4), np.array([1.0]))

    assert gradient["value_head.bias"].item() == pytest.approx(1.0)
    assert torch.count_nonzero(gradient["action_head.weight"]) == 0
    assert torch.count_nonzero(gradient["action_head.bias"]) == 0


def test_action_error_reaches_shared_trunk() -> None:
    network = ActorCriticNetwork(INPUT_SIZE)
    frame = _frame()
    error = np.array([1.0, -1.0, 0.5, 0.0])

    gradient = network.backpropagate(frame, error, np.zeros(1))

    probabilities, _ = network.infer(frame)
    # softmax vector-Jacobian product: p * (e - p.e)
    expected = probabilities * (error - probabilities @ error)
    assert np.allclose(gradient["action_head.bias"].numpy(), expected, atol=1e-6)
    assert torch.count_nonzero(gradient["value_head.weight"]) == 0


def test_zero_gradient_is_a_no_op() -> None:
    network = ActorCriticNetwork(INPUT_SIZE)
    before = _params(network)

    network.apply_gradient({name: torch.zeros_like(p) for name, p in before.items()})

    for name, p in network.named_parameters():
        assert torch.equal(p, before[name])


def test_apply_gradient_descends() -> None:
    network = ActorCriticNetwork(INPUT_SIZE, learning_rate=0.1)
    before = _params(network)
    gradient = {"value_head.bias": torch.ones(1)}

    network.apply_gradient(gradient)

    assert network.value_head.bias.item() == pytest.approx(before["value_head.bias"].item() - 0.1)
    assert torch.equal(network.fc.weight, before["fc.weight"])


@pytest.mark.parametrize("gradient", [
    {"value_head.bias": torch.ones(2)},
    {"no_such_param": torch.ones(1)},
])
def test_bad_gradient_map_rejected_without_mutation(gradient) -> None:
    network = ActorCriticNetwork(INPUT_SIZE)
    before = _params(network)
    full = {name: torch.ones_like(p) for name, p in before.items()}
    full.update(gradient)

    with pytest.raises(GradientShapeError):
        network.apply_gradient(full)

    for name, p in network.named_parameters():
        assert torch.equal(p, before[name])


def test_predictor_names_outputs() -> None:
    network = ActorCriticNetwork(INPUT_SIZE)
    predictor = Predictor(network, "m1")
    frame = _frame()

    result = predictor.predict(frame)
    probabilities, value = network.infer(frame)

    assert set(result) == {"probabilities", "valueFun"}
    assert np.array_equal(result["probabilities"], probabilities)
    assert result["valueFun"].shape == (1,)
    assert result["valueFun"][0] == value

    record = predictor.predict_record(frame, timestamp=42)
    assert record.model == "m1"
    assert record.timestamp == 42
    assert len(record.action_probabilities) == 4


def test_inference_during_updates_sees_whole_steps() -> None:
    network = ActorCriticNetwork(INPUT_SIZE)
    frame = _frame()
    errors = []

    def reader():
        for _ in range(50):
            probabilities, _ = network.infer(frame)
            if not np.isfinite(probabilities).all():
                errors.append(probabilities)

    threads = [threading.Thread(target=reader) for _ in range(4)]
    for t in threads:
        t.start()
    for _ in range(20):
        gradient = network.backpropagate(frame, np.full(4, 0.1), np.array([0.1]))
        network.apply_gradient(gradient)
    for t in threads:
        t.join()

    assert errors == []


def test_write_lock_excludes_readers() -> None:
    lock = ReadWriteLock()
    entered = threading.Event()

    with lock.write():
        t = threading.Thread(target=lambda: (lock.acquire_read(), entered.set(), lock.release_read()))
        t.start()
        assert not entered.wait(0.1)
    t.join(1.0)

    assert entered.is_set()
