from backend.engine.gameplay.game import MoveResult, PuzzleEngine, clamp_dimension

__all__ = ["MoveResult", "PuzzleEngine", "clamp_dimension"]
