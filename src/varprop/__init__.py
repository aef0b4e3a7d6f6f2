# Copyright (c) 2026 Jeroen Visser. All rights reserved.
# Licensed under the MIT License — see LICENSE.
"""
varprop

Numerical orbit propagation with variational equations. Integrates a
spacecraft state under composable force models together with its state
transition matrix and parameter Jacobians, locates events such as
maneuver ignition and cutoff, keeps the sensitivities consistent across
those switches, and generates bounded, re-queryable ephemerides.
"""

from varprop.domain.errors import (
    ErrorSpecifier,
    PropagationError,
)
from varprop.domain.orbital_mechanics import (
    OrbitalConstants,
    OrbitType,
    PositionAngleType,
    cartesian_to_elements,
    elements_to_cartesian,
    kepler_to_cartesian,
    solve_kepler_equation,
)
from varprop.domain.state import SpacecraftState
from varprop.domain.state_mapper import (
    StateMapper,
    tolerances,
)
from varprop.domain.parameters import (
    DateDriver,
    ParameterDriver,
)
from varprop.domain.atmosphere import (
    AtmosphereModel,
    DragConfig,
)
from varprop.domain.force_models import (
    AtmosphericDragForce,
    ForceModel,
    J2Perturbation,
    NewtonianAttraction,
    SolarRadiationPressureForce,
)
from varprop.domain.maneuvers import (
    ConstantThrustManeuver,
    DateBasedManeuverTriggers,
    EventBasedManeuverTriggers,
)
from varprop.domain.adaptive_integration import (
    AdaptiveStepConfig,
    DormandPrinceIntegrator,
    EventAction,
)
from varprop.domain.events import (
    DateDetector,
    EventDetector,
    FunctionalDetector,
    continue_on_event,
    stop_on_event,
)
from varprop.domain.additional_states import (
    AdditionalDerivativesProvider,
    AdditionalStateProvider,
    CombinedDerivatives,
)
from varprop.domain.harvester import MatricesHarvester
from varprop.domain.ephemeris import (
    BoundedEphemeris,
    EphemerisGenerator,
)
from varprop.domain.propagator import NumericalPropagator

__version__ = "0.1.0"

__all__ = [
    "AdaptiveStepConfig",
    "AdditionalDerivativesProvider",
    "AdditionalStateProvider",
    "AtmosphereModel",
    "AtmosphericDragForce",
    "BoundedEphemeris",
    "CombinedDerivatives",
    "ConstantThrustManeuver",
    "DateBasedManeuverTriggers",
    "DateDetector",
    "DateDriver",
    "DormandPrinceIntegrator",
    "DragConfig",
    "EphemerisGenerator",
    "ErrorSpecifier",
    "EventAction",
    "EventBasedManeuverTriggers",
    "EventDetector",
    "ForceModel",
    "FunctionalDetector",
    "J2Perturbation",
    "MatricesHarvester",
    "NewtonianAttraction",
    "NumericalPropagator",
    "OrbitType",
    "OrbitalConstants",
    "ParameterDriver",
    "PositionAngleType",
    "PropagationError",
    "SolarRadiationPressureForce",
    "SpacecraftState",
    "StateMapper",
    "cartesian_to_elements",
    "continue_on_event",
    "elements_to_cartesian",
    "kepler_to_cartesian",
    "solve_kepler_equation",
    "stop_on_event",
    "tolerances",
]
