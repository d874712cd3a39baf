# pylint: disable=missing-docstring
from abc import abstractmethod
from typing import Any
import numpy as np


# pylint: disable=invalid-name line-too-long
class BaseEstimator:
    def get_params(self, mode: str = "all") -> Any:
        """
        Get parameters for this estimator.

        :param mode: Specifies which parameters to return. Options are:
            - "all": Return all parameters.
            - "trainable": Return only learnable arrays, keyed "<layer>.<param>".
            - "non_trainable": Return every other field, keyed like the trainable ones.
        :return: Dictionary of parameter names mapped to their values.
        """
        if mode == "all":
            return self.__dict__
        if mode == "trainable":
            return self._trainable_params()
        if mode == "non_trainable":
            return self._non_trainable_params()

        raise ValueError(
            f"Invalid mode '{mode}'. Choose from 'all', 'trainable', or 'non_trainable'."
        )

    def _trainable_params(self) -> dict:
        return {}

    def _non_trainable_params(self) -> dict:
        trainable = self._trainable_params()
        return {k: v for k, v in self.__dict__.items() if k not in trainable}


class BaseClassifier(BaseEstimator):
    @abstractmethod
    def predict(self, X: np.ndarray) -> np.ndarray:
        """
        :param X: np array of shape (H, W, C, N)
        :return: class indices of shape (N',)
        """
        raise NotImplementedError

    def score(self, X: np.ndarray, y: np.ndarray) -> float:
        """
        :param X: numpy array of shape (H, W, C, N) holding N images
        :param y: numpy array of shape (N',) with one class index per predicted instance
        :return: accuracy
        """
        y_pred = self.predict(X)
        return float(np.mean(y_pred == np.asarray(y).reshape(-1)))
