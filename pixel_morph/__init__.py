"""
Pixel Morph
===========

Rearrange every pixel of a source image so that, seen as a mosaic, it
approximates a target picture, then animate the transition as a flock of
particles. Ships two solvers:

- **Optimal** (Kuhn-Munkres, exact)
- **Genetic** (randomised local search with previews, fast)
"""

__version__ = "0.3.0"

from pixel_morph.config import Algorithm, CropScale, GenerationSettings
from pixel_morph.errors import InvalidDimensions, MorphError, SizeConstraintViolated
from pixel_morph.heuristics import assignment_cost, heuristic
from pixel_morph.image_io import TargetImage, load_image, load_weights, prepare_images
from pixel_morph.jobs import JobWorker
from pixel_morph.morph_sim import Sim, init_canvas, init_image
from pixel_morph.presets import Preset, UnprocessedPreset
from pixel_morph.solver_genetic import process_genetic, process_preset
from pixel_morph.solver_optimal import execute_hungarian, process_optimal

__all__ = [
    "Algorithm",
    "CropScale",
    "GenerationSettings",
    "InvalidDimensions",
    "JobWorker",
    "MorphError",
    "Preset",
    "Sim",
    "SizeConstraintViolated",
    "TargetImage",
    "UnprocessedPreset",
    "assignment_cost",
    "execute_hungarian",
    "heuristic",
    "init_canvas",
    "init_image",
    "load_image",
    "load_weights",
    "prepare_images",
    "process_genetic",
    "process_optimal",
    "process_preset",
]
