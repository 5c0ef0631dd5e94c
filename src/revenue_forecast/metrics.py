import numpy as np
import pandas as pd

from .errors import LengthMismatchError


def average_squared_error(actual: pd.Series | np.ndarray, predicted: pd.Series | np.ndarray) -> float:
    actual_arr = np.asarray(actual, dtype=float)
    predicted_arr = np.asarray(predicted, dtype=float)
    if actual_arr.shape != predicted_arr.shape:
        raise LengthMismatchError(
            f"Actual has {actual_arr.size} values but predicted has {predicted_arr.size}."
        )
    if actual_arr.size == 0:
        return np.nan
    return float(np.mean((actual_arr - predicted_arr) ** 2))
