"""Tests for canopyray.simulator.canopy.tracer module."""
import logging
import math

import pytest
import numpy as np

from canopyray.errors import ConfigurationError
from canopyray.models import (
    CanopyLayer,
    LeafAngleDistribution,
    LeafOpticalProperties,
    LightSource,
    Room,
    SpectralFunction,
    make_tracer_config,
)
from canopyray.simulator.canopy.aggregation import LayerAccumulator
from canopyray.simulator.canopy.tracer import MAX_SCATTER_RAYS, CanopyRayTracer, RayTask, _TraceRun


def _transmission_ratio(result, layer_id="canopy"):
    return result.transmitted_ppfd_by_layer[layer_id] / result.ppfd_by_layer[layer_id]


class TestSceneSetup:
    def test_set_room_from_dimensions(self):
        tracer = CanopyRayTracer()
        room = tracer.set_room(4.0, 3.0, 2.5, wall_reflectance=0.5)
        assert (room.width, room.length, room.height) == (4.0, 3.0, 2.5)
        assert tracer.room is room

    def test_set_room_from_room(self):
        tracer = CanopyRayTracer()
        room = Room(2.0, 2.0, 2.0, diffuse=False)
        assert tracer.set_room(room) is room

    def test_set_room_missing_dimensions(self):
        with pytest.raises(ConfigurationError):
            CanopyRayTracer().set_room(4.0)

    def test_set_room_reflectance_length(self):
        with pytest.raises(ConfigurationError):
            CanopyRayTracer().set_room(2.0, 2.0, 2.0, wall_reflectance=np.full(10, 0.5))

    def test_duplicate_layer_id(self):
        tracer = CanopyRayTracer()
        tracer.add_layer(CanopyLayer(id="a", height=1.0, thickness=0.5, lai=2.0))
        with pytest.raises(ConfigurationError, match="Duplicate"):
            tracer.add_layer(CanopyLayer(id="a", height=2.0, thickness=0.5, lai=2.0))

    @pytest.mark.parametrize("thickness", [0.0, -0.2])
    def test_non_positive_thickness(self, thickness):
        with pytest.raises(ConfigurationError):
            CanopyRayTracer().add_layer(CanopyLayer(id="a", height=1.0, thickness=thickness, lai=2.0))

    def test_optics_length_mismatch(self):
        optics = LeafOpticalProperties.uniform(0.1, 0.1, 0.8, n_samples=10)
        with pytest.raises(ConfigurationError):
            CanopyRayTracer().add_layer(CanopyLayer(id="a", height=1.0, thickness=0.5, lai=2.0,
                                                    optics=optics))

    def test_missing_optics_uses_generic_leaf(self):
        tracer = CanopyRayTracer()
        tracer.add_layer(CanopyLayer(id="a", height=1.0, thickness=0.5, lai=2.0))
        assert tracer.layers[0].chlorophyll > 0.0
        assert len(tracer.layers[0].absorptance) == 401

    def test_out_of_range_lai_warns(self, canopyray_caplog):
        CanopyRayTracer().add_layer(CanopyLayer(id="dense", height=1.0, thickness=0.5, lai=25.0))
        warnings = [r for r in canopyray_caplog.records if r.levelno == logging.WARNING]
        assert any("LAI" in r.getMessage() for r in warnings)

    def test_out_of_range_thickness_warns(self, canopyray_caplog):
        CanopyRayTracer().add_layer(CanopyLayer(id="tall", height=5.0, thickness=6.0, lai=2.0))
        assert any("thickness" in r.getMessage() for r in canopyray_caplog.records)

    def test_light_source_length_mismatch(self):
        with pytest.raises(ConfigurationError):
            CanopyRayTracer().add_light_source(LightSource((1.0, 1.0, 2.0), np.ones(10), 100.0))


class TestTraceErrors:
    def test_no_room(self, parity_config):
        tracer = CanopyRayTracer(parity_config)
        tracer.add_layer(CanopyLayer(id="a", height=1.0, thickness=0.5, lai=2.0))
        with pytest.raises(ConfigurationError, match="Room"):
            tracer.trace()

    def test_no_layers(self, parity_config):
        tracer = CanopyRayTracer(parity_config)
        tracer.set_room(2.0, 2.0, 2.0)
        with pytest.raises(ConfigurationError, match="layer"):
            tracer.trace()

    @pytest.mark.parametrize("resolution", [0.0, -1.0])
    def test_bad_resolution(self, parity_config, make_single_layer_tracer, resolution):
        with pytest.raises(ConfigurationError):
            make_single_layer_tracer(parity_config).trace(grid_resolution=resolution)

    def test_no_sources_returns_zero_result(self, parity_config, black_optics, canopyray_caplog):
        tracer = CanopyRayTracer(parity_config)
        tracer.set_room(2.0, 2.0, 3.0)
        tracer.add_layer(CanopyLayer(id="canopy", height=1.0, thickness=0.5, lai=3.0, optics=black_optics))
        result = tracer.trace(grid_resolution=1.0)
        assert result.ppfd_by_layer["canopy"] == 0.0
        assert result.total_rays == 0
        assert not result.ppfd_maps["canopy"].any()
        assert any("No light sources" in r.getMessage() for r in canopyray_caplog.records)


class TestBeerLambertParity:
    def test_collimated_black_layer(self, parity_config, make_single_layer_tracer):
        result = make_single_layer_tracer(parity_config).trace(grid_resolution=0.5)
        assert result.ppfd_by_layer["canopy"] == pytest.approx(1000.0, rel=1e-6)
        assert _transmission_ratio(result) == pytest.approx(math.exp(-1.5), rel=1e-6)

    def test_absorption_is_the_complement(self, parity_config, make_single_layer_tracer):
        result = make_single_layer_tracer(parity_config).trace(grid_resolution=1.0)
        assert result.absorption_by_layer["canopy"].par > 0.0
        assert result.scattering_contribution == 0.0

    def test_more_lai_transmits_less(self, parity_config, make_single_layer_tracer):
        ratios = [_transmission_ratio(make_single_layer_tracer(parity_config, lai=lai).trace(1.0))
                  for lai in (1.0, 3.0, 6.0)]
        assert ratios[0] > ratios[1] > ratios[2]

    def test_planophile_attenuates_more(self, parity_config, make_single_layer_tracer):
        spherical = make_single_layer_tracer(parity_config).trace(1.0)
        planophile = make_single_layer_tracer(
            parity_config, leaf_angle_distribution=LeafAngleDistribution("planophile")).trace(1.0)
        assert _transmission_ratio(planophile) < _transmission_ratio(spherical)

    def test_slant_path_attenuates_oblique_rays_more(self, make_single_layer_tracer):
        kwargs = dict(rays_per_pixel=20, max_bounces=0, enable_scattering=False,
                      enable_fluorescence=False, seed=5)
        vertical = make_single_layer_tracer(make_tracer_config(path_length="vertical", **kwargs),
                                            distribution="diffuse")
        slant = make_single_layer_tracer(make_tracer_config(**kwargs), distribution="diffuse")
        assert _transmission_ratio(vertical.trace(1.0)) == pytest.approx(math.exp(-1.5), rel=1e-6)
        assert _transmission_ratio(slant.trace(1.0)) < math.exp(-1.5)


class TestRoomScenario:
    @pytest.fixture
    def room_tracer(self, flat_spectrum, black_optics):
        def _make(**overrides):
            tracer = CanopyRayTracer(make_tracer_config(rays_per_pixel=5, seed=0, **overrides))
            tracer.set_room(10.0, 10.0, 5.0, wall_reflectance=0.0)
            tracer.add_layer(CanopyLayer(id="canopy", height=2.0, thickness=1.0, lai=3.0,
                                         optics=black_optics))
            tracer.add_light_source(LightSource((5.0, 5.0, 4.5), flat_spectrum, 1000.0))
            return tracer
        return _make

    def test_vertical_depth_matches_closed_form(self, room_tracer):
        result = room_tracer(path_length="vertical").trace(grid_resolution=2.0)
        assert result.transmitted_ppfd_by_layer["canopy"] == pytest.approx(223.1, rel=0.05)
        assert result.grid_shape == (5, 5)

    def test_slant_depth_by_default(self, room_tracer):
        result = room_tracer().trace(grid_resolution=2.0)
        assert result.ppfd_maps["canopy"][2, 2] == pytest.approx(1000.0, rel=1e-6)
        assert result.ppfd_by_layer["canopy"] == pytest.approx(1000.0, rel=1e-6)
        # oblique rays toward the corners cross more than the 1 m layer depth
        assert result.transmitted_ppfd_by_layer["canopy"] < 0.5 * 223.1

    def test_slant_nadir_cell_matches_closed_form(self, flat_spectrum, black_optics):
        tracer = CanopyRayTracer(make_tracer_config(rays_per_pixel=5, seed=0))
        tracer.set_room(2.0, 2.0, 5.0, wall_reflectance=0.0)
        tracer.add_layer(CanopyLayer(id="canopy", height=2.0, thickness=1.0, lai=3.0, optics=black_optics))
        tracer.add_light_source(LightSource((1.0, 1.0, 4.5), flat_spectrum, 1000.0))
        result = tracer.trace(grid_resolution=2.0)
        assert result.grid_shape == (1, 1)
        assert result.transmitted_ppfd_by_layer["canopy"] == pytest.approx(223.1, rel=1e-3)


class TestGrid:
    def test_shape_rounds_up(self, make_single_layer_tracer):
        config = make_tracer_config(rays_per_pixel=1, max_bounces=0, enable_scattering=False,
                                    enable_fluorescence=False, seed=1)
        result = make_single_layer_tracer(config).trace(grid_resolution=0.3)
        assert result.grid_shape == (7, 7)
        assert result.ppfd_maps["canopy"].shape == (7, 7)

    def test_exact_division(self, parity_config, make_single_layer_tracer):
        assert make_single_layer_tracer(parity_config).trace(grid_resolution=0.5).grid_shape == (4, 4)

    def test_progress_callback(self, parity_config, make_single_layer_tracer):
        fractions = []
        make_single_layer_tracer(parity_config).trace(grid_resolution=0.5, progress_callback=fractions.append)
        assert len(fractions) == 4
        assert fractions == sorted(fractions)
        assert fractions[-1] == pytest.approx(1.0)

    def test_total_rays(self, parity_config, make_single_layer_tracer):
        result = make_single_layer_tracer(parity_config).trace(grid_resolution=1.0)
        assert result.total_rays == 4 * parity_config.rays_per_pixel

    def test_penetration_profile_covers_room(self, parity_config, make_single_layer_tracer):
        result = make_single_layer_tracer(parity_config).trace(grid_resolution=1.0)
        heights = [sample.height for sample in result.penetration_profile]
        assert heights[0] == pytest.approx(3.0)
        assert heights[-1] == pytest.approx(0.0, abs=1e-9)


class TestSecondaryRays:
    @pytest.fixture
    def scattering_config(self):
        return make_tracer_config(rays_per_pixel=4, max_bounces=2, seed=11)

    @pytest.fixture
    def leafy_tracer(self, scattering_config, flat_spectrum):
        tracer = CanopyRayTracer(scattering_config)
        tracer.set_room(2.0, 2.0, 3.0, wall_reflectance=0.0)
        tracer.add_layer(CanopyLayer(id="upper", height=2.0, thickness=0.4, lai=2.0))
        tracer.add_layer(CanopyLayer(id="lower", height=1.0, thickness=0.4, lai=2.0))
        tracer.add_light_source(LightSource((1.0, 1.0, 2.8), flat_spectrum, 800.0,
                                            distribution="collimated"))
        return tracer

    def test_scattering_reaches_layers(self, leafy_tracer):
        result = leafy_tracer.trace(grid_resolution=1.0)
        assert 0.0 < result.scattering_contribution < 1.0
        assert result.total_rays > 4 * 4
        assert result.ppfd_by_layer["lower"] > 0.0

    def test_scattering_disabled(self, flat_spectrum):
        config = make_tracer_config(rays_per_pixel=4, max_bounces=2, enable_scattering=False,
                                    enable_fluorescence=False, seed=11)
        tracer = CanopyRayTracer(config)
        tracer.set_room(2.0, 2.0, 3.0, wall_reflectance=0.0)
        tracer.add_layer(CanopyLayer(id="canopy", height=1.0, thickness=0.4, lai=2.0))
        tracer.add_light_source(LightSource((1.0, 1.0, 2.8), flat_spectrum, 800.0,
                                            distribution="collimated"))
        assert tracer.trace(grid_resolution=1.0).scattering_contribution == 0.0

    def test_fluorescence_adds_far_red(self, flat_spectrum):
        kwargs = dict(rays_per_pixel=4, max_bounces=1, enable_scattering=False, seed=3)
        results = {}
        for enabled in (False, True):
            tracer = CanopyRayTracer(make_tracer_config(enable_fluorescence=enabled, **kwargs))
            tracer.set_room(2.0, 2.0, 3.0, wall_reflectance=0.0)
            tracer.add_layer(CanopyLayer(id="upper", height=2.0, thickness=0.4, lai=2.0))
            tracer.add_layer(CanopyLayer(id="lower", height=1.0, thickness=0.4, lai=2.0))
            tracer.add_light_source(LightSource((1.0, 1.0, 2.8), SpectralFunction.gaussian(450, 20).values,
                                                800.0, distribution="collimated"))
            results[enabled] = tracer.trace(grid_resolution=1.0)
        spectrum_on = results[True].spectral_irradiance_by_layer["lower"]
        spectrum_off = results[False].spectral_irradiance_by_layer["lower"]
        red_edge = slice(685 - 380, 686 - 380)
        assert spectrum_on[red_edge].sum() > spectrum_off[red_edge].sum()

    def test_walls_return_light(self, flat_spectrum, black_optics):
        kwargs = dict(rays_per_pixel=8, max_bounces=3, enable_scattering=False,
                      enable_fluorescence=False, seed=9)
        incident = {}
        for reflectance in (0.0, 0.9):
            tracer = CanopyRayTracer(make_tracer_config(**kwargs))
            tracer.set_room(2.0, 2.0, 3.0, wall_reflectance=reflectance)
            tracer.add_layer(CanopyLayer(id="canopy", height=1.0, thickness=0.5, lai=1.0,
                                         optics=black_optics))
            tracer.add_light_source(LightSource((1.0, 1.0, 2.8), flat_spectrum, 1000.0,
                                                distribution="diffuse"))
            incident[reflectance] = tracer.trace(grid_resolution=1.0).ppfd_by_layer["canopy"]
        assert incident[0.9] > incident[0.0]

    def test_specular_walls(self, flat_spectrum, black_optics):
        tracer = CanopyRayTracer(make_tracer_config(rays_per_pixel=2, max_bounces=2, seed=4))
        tracer.set_room(Room(2.0, 2.0, 3.0, wall_reflectance=0.5, diffuse=False))
        tracer.add_layer(CanopyLayer(id="canopy", height=1.0, thickness=0.5, lai=1.0, optics=black_optics))
        tracer.add_light_source(LightSource((1.0, 1.0, 2.8), flat_spectrum, 1000.0, distribution="gaussian",
                                            beam_angle=60.0))
        result = tracer.trace(grid_resolution=1.0)
        assert result.ppfd_by_layer["canopy"] > 0.0


class TestDeterminism:
    def _trace(self, leafy_config, flat_spectrum):
        tracer = CanopyRayTracer(leafy_config)
        tracer.set_room(2.0, 2.0, 3.0, wall_reflectance=0.5)
        tracer.add_layer(CanopyLayer(id="canopy", height=1.0, thickness=0.5, lai=2.0))
        tracer.add_light_source(LightSource((1.0, 1.0, 2.8), flat_spectrum, 500.0))
        return tracer.trace(grid_resolution=1.0)

    def test_same_seed_same_result(self, flat_spectrum):
        config = make_tracer_config(rays_per_pixel=3, max_bounces=2, seed=21)
        first = self._trace(config, flat_spectrum)
        second = self._trace(config, flat_spectrum)
        np.testing.assert_array_equal(first.ppfd_maps["canopy"], second.ppfd_maps["canopy"])
        assert first.total_rays == second.total_rays

    def test_workers_do_not_change_result(self, flat_spectrum):
        serial = self._trace(make_tracer_config(rays_per_pixel=3, max_bounces=2, seed=21), flat_spectrum)
        threaded = self._trace(make_tracer_config(rays_per_pixel=3, max_bounces=2, seed=21, n_workers=2),
                               flat_spectrum)
        np.testing.assert_array_equal(serial.ppfd_maps["canopy"], threaded.ppfd_maps["canopy"])
        assert serial.scattering_contribution == threaded.scattering_contribution

    def test_convergence_threshold_does_not_change_sampling(self, flat_spectrum):
        loose = self._trace(make_tracer_config(rays_per_pixel=3, max_bounces=2, seed=21,
                                               convergence_threshold=0.5), flat_spectrum)
        tight = self._trace(make_tracer_config(rays_per_pixel=3, max_bounces=2, seed=21,
                                               convergence_threshold=1e-6), flat_spectrum)
        assert loose.total_rays == tight.total_rays
        np.testing.assert_array_equal(loose.ppfd_maps["canopy"], tight.ppfd_maps["canopy"])


class TestScatterFanOut:
    @pytest.fixture
    def run(self, make_single_layer_tracer):
        tracer = make_single_layer_tracer(make_tracer_config(seed=1), optics=LeafOpticalProperties.generic_leaf())
        return _TraceRun(tracer, 1.0)

    @staticmethod
    def _scatter(run, energy, rng, bounce=2):
        stack = []
        task = RayTask(np.array([1.0, 1.0, 1.25]), np.array([0.0, 0.0, -1.0]), np.ones(401), bounce,
                       "primary", 401.0)
        scattered = np.full(401, energy / 401)
        run.scatter(run.layers[0], task, np.array([1.0, 1.0, 1.25]), scattered, energy, stack, rng)
        return stack, scattered

    @pytest.mark.parametrize("energy, expected",
                             [(0.05, 1), (0.25, 3), (0.401, 5), (50.0, MAX_SCATTER_RAYS)])
    def test_ray_count(self, run, rng, energy, expected):
        stack, _ = self._scatter(run, energy, rng)
        assert len(stack) == expected

    def test_rays_share_the_scattered_spectrum(self, run, rng):
        stack, scattered = self._scatter(run, 0.25, rng)
        for task in stack:
            np.testing.assert_allclose(task.spectrum, scattered / 3)
            assert task.bounce == 3
            assert task.kind == "scatter"
            assert task.reference_energy == 401.0
            np.testing.assert_array_equal(task.origin, [1.0, 1.0, 1.25])
        np.testing.assert_allclose(sum(task.spectrum for task in stack), scattered)

    def test_even_split_about_the_leaf_normal(self, run):
        rng = np.random.default_rng(99)
        replica = np.random.default_rng(99)
        sampler = run.layers[0].sampler
        forward = 0
        total = 0
        for _ in range(400):
            stack, _ = self._scatter(run, 1.0, rng)
            for task in stack:
                normal = sampler.sample_normal(replica)
                reflect = replica.random() < 0.5
                replica.random(2)
                assert (float(np.dot(task.direction, normal)) > 0.0) == reflect
                forward += reflect
                total += 1
        assert total == 400 * MAX_SCATTER_RAYS
        assert forward / total == pytest.approx(0.5, abs=0.05)


class TestRussianRoulette:
    @staticmethod
    def _run(make_single_layer_tracer, **overrides):
        return _TraceRun(make_single_layer_tracer(make_tracer_config(seed=1, **overrides)), 1.0)

    @staticmethod
    def _faint_task(kind="scatter"):
        return RayTask(np.array([1.0, 1.0, 2.5]), np.array([0.0, 0.0, -1.0]), np.full(401, 0.001), 1,
                       kind, 401.0)

    def test_disabled_by_default(self, make_single_layer_tracer, rng):
        run = self._run(make_single_layer_tracer, roulette_survival=1e-9)
        accumulator = LayerAccumulator(1, 401)
        assert run.propagate(self._faint_task(), [], accumulator, rng)
        np.testing.assert_allclose(accumulator.incident[0], 0.001)

    def test_faint_secondary_killed(self, make_single_layer_tracer, rng):
        run = self._run(make_single_layer_tracer, roulette_threshold=0.5, roulette_survival=1e-9)
        accumulator = LayerAccumulator(1, 401)
        assert not run.propagate(self._faint_task(), [], accumulator, rng)
        assert not accumulator.incident.any()

    def test_primaries_never_killed(self, make_single_layer_tracer, rng):
        run = self._run(make_single_layer_tracer, roulette_threshold=0.5, roulette_survival=1e-9)
        accumulator = LayerAccumulator(1, 401)
        assert run.propagate(self._faint_task("primary"), [], accumulator, rng)

    def test_survivors_carry_boosted_weight(self, make_single_layer_tracer, rng):
        run = self._run(make_single_layer_tracer, roulette_threshold=0.5, roulette_survival=0.25)
        survivors = 0
        for _ in range(200):
            accumulator = LayerAccumulator(1, 401)
            if run.propagate(self._faint_task(), [], accumulator, rng):
                survivors += 1
                np.testing.assert_allclose(accumulator.incident[0], 0.004)
            else:
                assert not accumulator.incident.any()
        assert survivors / 200 == pytest.approx(0.25, abs=0.1)

    def test_unbiased_against_full_tracing(self, flat_spectrum):
        results = {}
        for threshold in (0.0, 0.01):
            tracer = CanopyRayTracer(make_tracer_config(rays_per_pixel=20, max_bounces=3, seed=11,
                                                        roulette_threshold=threshold))
            tracer.set_room(2.0, 2.0, 3.0, wall_reflectance=0.7)
            tracer.add_layer(CanopyLayer(id="upper", height=2.0, thickness=0.4, lai=2.0))
            tracer.add_layer(CanopyLayer(id="lower", height=1.0, thickness=0.4, lai=2.0))
            tracer.add_light_source(LightSource((1.0, 1.0, 2.8), flat_spectrum, 800.0,
                                                distribution="collimated"))
            results[threshold] = tracer.trace(grid_resolution=1.0)
        full, roulette = results[0.0], results[0.01]
        assert roulette.total_rays < full.total_rays
        for layer_id in ("upper", "lower"):
            assert roulette.ppfd_by_layer[layer_id] == pytest.approx(full.ppfd_by_layer[layer_id], rel=0.15)


class TestTwoTierRoom:
    def test_quick_start_scene(self, flat_spectrum):
        tracer = CanopyRayTracer(make_tracer_config(rays_per_pixel=2, max_bounces=3, seed=1))
        tracer.set_room(4.0, 4.0, 3.0, wall_reflectance=0.7)
        tracer.add_layer(CanopyLayer(id="upper", height=2.0, thickness=0.4, lai=3.0))
        tracer.add_layer(CanopyLayer(id="lower", height=0.8, thickness=0.4, lai=2.5))
        tracer.add_light_source(LightSource((2.0, 2.0, 2.8), flat_spectrum, 600.0))
        result = tracer.trace(grid_resolution=0.5)
        assert result.grid_shape == (8, 8)
        assert result.ppfd_by_layer["upper"] > result.ppfd_by_layer["lower"] > 0.0
        assert list(result.summary_dataframe()["layer_id"]) == ["upper", "lower"]
