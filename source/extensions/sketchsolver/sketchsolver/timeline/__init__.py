from .sketch_registry import SketchRegistry
