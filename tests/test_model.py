import pytest
import torch

from activations import ActivationSampler, ActivationSnapshot, TensorScope
from errors import ConfigError, EngineError
from model import LAYER_NAMES, ModelBuilder, categorical_crossentropy


class TestModelBuilder:
    def test_architecture(self):
        model, probe = ModelBuilder(image_size=64).build(3)
        stages = model.stages

        assert probe.layer_names == LAYER_NAMES
        assert len(probe) == 7
        assert stages.conv1[0].out_channels == 16
        assert stages.conv1[0].kernel_size == (3, 3)
        assert stages.conv2[0].out_channels == 32
        assert stages.dense[0].in_features == 32 * 14 * 14
        assert stages.dense[0].out_features == 64
        assert stages.output[0].out_features == 3

    def test_compiled(self):
        model, _ = ModelBuilder(image_size=16, learning_rate=0.001).build(2)
        assert isinstance(model.optimizer, torch.optim.Adam)
        assert model.optimizer.param_groups[0]['lr'] == 0.001
        assert model.loss_fn is categorical_crossentropy
        assert model.metrics == ('accuracy',)

    def test_output_is_probability_distribution(self):
        model, _ = ModelBuilder(image_size=16).build(4)
        with torch.no_grad():
            out = model(torch.rand(5, 3, 16, 16))
        assert out.shape == (5, 4)
        assert torch.allclose(out.sum(dim=1), torch.ones(5), atol=1e-5)

    @pytest.mark.parametrize('n', [0, 1])
    def test_needs_two_classes(self, n):
        with pytest.raises(ConfigError):
            ModelBuilder(image_size=16).build(n)

    def test_probe_shapes(self):
        model, probe = ModelBuilder(image_size=16).build(2)
        with torch.no_grad():
            outputs = dict(probe(torch.rand(1, 3, 16, 16)))
        assert outputs['conv1'].shape == (1, 16, 14, 14)
        assert outputs['pool1'].shape == (1, 16, 7, 7)
        assert outputs['conv2'].shape == (1, 32, 5, 5)
        assert outputs['pool2'].shape == (1, 32, 2, 2)
        assert outputs['flatten'].shape == (1, 128)
        assert outputs['output'].shape == (1, 2)


class TestCrossEntropy:
    def test_perfect_prediction_is_near_zero(self):
        targets = torch.tensor([[1.0, 0.0], [0.0, 1.0]])
        assert categorical_crossentropy(targets.clone(), targets).item() < 1e-5

    def test_uniform_prediction(self):
        probs = torch.full((2, 2), 0.5)
        targets = torch.tensor([[1.0, 0.0], [0.0, 1.0]])
        assert categorical_crossentropy(probs, targets).item() == pytest.approx(0.6931, abs=1e-3)


class TestActivationSampler:
    def test_one_mean_per_layer(self):
        model, probe = ModelBuilder(image_size=16).build(3)
        x = torch.rand(3, 16, 16)
        snap = ActivationSampler().sample(probe, x)

        assert isinstance(snap, ActivationSnapshot)
        assert snap.layer_names == LAYER_NAMES
        assert len(snap) == 7
        # softmax outputs average to 1/n
        assert snap.as_dict()['output'] == pytest.approx(1 / 3, abs=1e-5)
        with torch.no_grad():
            expected = dict(probe(x.unsqueeze(0)))['conv1'].mean().item()
        assert snap[0] == pytest.approx(expected)

    def test_restores_training_mode(self):
        model, probe = ModelBuilder(image_size=16).build(2)
        model.train()
        ActivationSampler().sample(probe, torch.rand(1, 3, 16, 16))
        assert model.training

    def test_rejects_batches(self):
        _, probe = ModelBuilder(image_size=16).build(2)
        with pytest.raises(EngineError):
            ActivationSampler().sample(probe, torch.rand(2, 3, 16, 16))

    def test_shape_mismatch_is_engine_error(self):
        _, probe = ModelBuilder(image_size=16).build(2)
        with pytest.raises(EngineError):
            ActivationSampler().sample(probe, torch.rand(3, 32, 32))


class TestTensorScope:
    def test_releases_on_error(self):
        scope = TensorScope()
        with pytest.raises(ValueError):
            with scope:
                scope.track(torch.zeros(2))
                scope.track(torch.ones(2))
                assert len(scope) == 2
                raise ValueError('boom')
        assert len(scope) == 0
        assert scope.closed
