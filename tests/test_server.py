import math

import numpy as np
import pytest

from kernel import multiply_sequential
from protocol import AccessDeniedError
from registry import get_registry
from server import WARMUP_LENGTH, AlgorithmEngine, parse_args


def test_parse_args():
    assert parse_args(["server.py"]) == WARMUP_LENGTH
    assert parse_args(["server.py", "64"]) == 64
    with pytest.raises(ValueError):
        parse_args(["server.py", "grande"])


class TestAlgorithmEngine:

    @pytest.fixture
    def engine(self):
        engine = AlgorithmEngine(warm_length=8)
        yield engine
        engine.shutdown()

    def test_multiply_is_the_local_engine(self, engine):
        rng = np.random.default_rng(2)
        a, b_t = rng.random((9, 4)), rng.random((5, 4))
        for threads in (1, 2, 4):
            assert np.array_equal(engine.multiply(threads, a, b_t), multiply_sequential(a, b_t))

    def test_pi(self, engine):
        assert abs(engine.pi(100_000, 3) - math.pi) < 0.05


class TestOverTheWire:

    def test_pi_and_multiply(self, worker):
        service = get_registry(worker).lookup("Alg")
        value = service.pi(20_000, 2)
        assert 0.0 < value < 4.0
        c = service.multiply(2, [[1, 2], [3, 4]], [[5, 6], [7, 8]])
        assert c.tolist() == [[17, 23], [39, 53]]

    def test_only_exported_methods(self, worker):
        service = get_registry(worker).lookup("Alg")
        with pytest.raises(AccessDeniedError):
            service.call("shutdown")
