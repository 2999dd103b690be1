from .step_record import StepRecord

__all__ = ["StepRecord"]
