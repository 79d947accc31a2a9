import inspect
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.ensemble import (
    GradientBoostingClassifier,
    GradientBoostingRegressor,
    RandomForestClassifier,
    RandomForestRegressor,
)
from sklearn.linear_model import ElasticNet, Lasso, LinearRegression, LogisticRegression, Ridge
from sklearn.neighbors import KNeighborsClassifier, KNeighborsRegressor
from sklearn.neural_network import MLPClassifier, MLPRegressor
from sklearn.svm import SVC, SVR
from sklearn.tree import DecisionTreeClassifier, DecisionTreeRegressor

from modules.model_factory.parameters import (
    Fixed,
    ParameterRange,
    Tunable,
    default_range,
    parse_parameter,
)
from utils.exceptions import ConfigurationSpaceError, UnresolvedParameterError

MODES = ('regression', 'classification')


class ModelSpec:
    """
    A named model family plus a mapping from parameter name to ``Fixed`` or
    ``Tunable``. Raw values passed in ``params`` are wrapped in ``Fixed``.
    """

    def __init__(self, family: str, params: Optional[Dict[str, Any]] = None, mode: str = 'regression',
                 name: Optional[str] = None):
        if mode not in MODES:
            raise ConfigurationSpaceError(f"Unknown mode '{mode}'. Available: {list(MODES)}")
        if family not in ModelFactory.FAMILIES.get(mode, {}):
            raise ConfigurationSpaceError(
                f"Unknown model family '{family}' for mode '{mode}'. "
                f"Available: {ModelFactory.get_available_models(mode)}"
            )
        self.family = family
        self.mode = mode
        self.name = name or family
        self.params: Dict[str, Any] = {k: parse_parameter(v) for k, v in (params or {}).items()}
        unknown = set(self.params) - set(ModelFactory.parameter_names(family, mode))
        if unknown:
            raise ConfigurationSpaceError(
                f"Parameters {sorted(unknown)} are not defined for '{family}'. "
                f"Known: {ModelFactory.parameter_names(family, mode)}"
            )

    @classmethod
    def from_config(cls, entry: Dict[str, Any]) -> "ModelSpec":
        return cls(entry['family'], entry.get('params', {}), mode=entry.get('mode', 'regression'),
                   name=entry.get('name'))

    def tunables(self) -> Dict[str, ParameterRange]:
        """Tunable parameters and their ranges, in declaration order."""
        return {
            k: (v.range if v.range is not None else default_range(k))
            for k, v in self.params.items() if isinstance(v, Tunable)
        }

    @property
    def is_resolved(self) -> bool:
        return not any(isinstance(v, Tunable) for v in self.params.values())

    def resolve(self, config: Optional[Dict[str, Any]] = None) -> "ModelSpec":
        """Replace every Tunable with the Fixed value from ``config``."""
        config = dict(config or {})
        tunables = self.tunables()
        extra = set(config) - set(tunables)
        if extra:
            raise ConfigurationSpaceError(f"Configuration sets non-tunable parameters: {sorted(extra)}")
        missing = [k for k in tunables if k not in config]
        if missing:
            raise UnresolvedParameterError(f"No value supplied for tunable parameter(s) {missing} of '{self.name}'.")
        resolved = {k: (Fixed(config[k]) if isinstance(v, Tunable) else v) for k, v in self.params.items()}
        return ModelSpec(self.family, resolved, mode=self.mode, name=self.name)

    def fixed_values(self) -> Dict[str, Any]:
        if not self.is_resolved:
            raise UnresolvedParameterError(
                f"Model '{self.name}' still has tunable parameters: {list(self.tunables())}"
            )
        return {k: v.value for k, v in self.params.items()}

    def describe(self) -> Dict[str, Any]:
        return {
            'family': self.family,
            'mode': self.mode,
            'name': self.name,
            'params': {k: (v.value if isinstance(v, Fixed) else 'tune') for k, v in self.params.items()},
        }

    def __repr__(self) -> str:
        return f"ModelSpec({self.family}, mode={self.mode}, params={self.describe()['params']})"


def _identity(v):
    return v


def _hidden_layers(v):
    return (int(v),) if np.isscalar(v) else tuple(int(u) for u in v)


def _inverse(v):
    return 1.0 / float(v) if float(v) > 0 else 1e10


class ModelFactory:
    """
    Factory for creating scikit-learn estimators from model families with a
    unified parameter vocabulary (penalty, mixture, trees, min_n, ...).
    """

    # family -> (estimator class, {param name: (estimator arg, converter)})
    REGRESSION = {
        'linear_reg': (LinearRegression, {}),
        'ridge': (Ridge, {'penalty': ('alpha', _identity)}),
        'lasso': (Lasso, {'penalty': ('alpha', _identity), 'positive': ('positive', bool)}),
        'elastic_net': (ElasticNet, {
            'penalty': ('alpha', _identity), 'mixture': ('l1_ratio', _identity), 'positive': ('positive', bool)}),
        'decision_tree': (DecisionTreeRegressor, {
            'tree_depth': ('max_depth', int), 'min_n': ('min_samples_split', int),
            'cost_complexity': ('ccp_alpha', float)}),
        'rand_forest': (RandomForestRegressor, {
            'trees': ('n_estimators', int), 'min_n': ('min_samples_split', int), 'mtry': ('max_features', int)}),
        'boost_tree': (GradientBoostingRegressor, {
            'trees': ('n_estimators', int), 'tree_depth': ('max_depth', int), 'learn_rate': ('learning_rate', float),
            'min_n': ('min_samples_split', int)}),
        'nearest_neighbor': (KNeighborsRegressor, {
            'neighbors': ('n_neighbors', int), 'weight_func': ('weights', _identity)}),
        'svm_rbf': (SVR, {'cost': ('C', float), 'rbf_sigma': ('gamma', float), 'margin': ('epsilon', float)}),
        'mlp': (MLPRegressor, {
            'hidden_units': ('hidden_layer_sizes', _hidden_layers), 'penalty': ('alpha', float),
            'epochs': ('max_iter', int), 'learn_rate': ('learning_rate_init', float)}),
    }

    CLASSIFICATION = {
        'logistic_reg': (LogisticRegression, {'penalty': ('C', _inverse)}),
        'decision_tree': (DecisionTreeClassifier, {
            'tree_depth': ('max_depth', int), 'min_n': ('min_samples_split', int),
            'cost_complexity': ('ccp_alpha', float)}),
        'rand_forest': (RandomForestClassifier, {
            'trees': ('n_estimators', int), 'min_n': ('min_samples_split', int), 'mtry': ('max_features', int)}),
        'boost_tree': (GradientBoostingClassifier, {
            'trees': ('n_estimators', int), 'tree_depth': ('max_depth', int), 'learn_rate': ('learning_rate', float),
            'min_n': ('min_samples_split', int)}),
        'nearest_neighbor': (KNeighborsClassifier, {
            'neighbors': ('n_neighbors', int), 'weight_func': ('weights', _identity)}),
        'svm_rbf': (SVC, {'cost': ('C', float), 'rbf_sigma': ('gamma', float)}),
        'mlp': (MLPClassifier, {
            'hidden_units': ('hidden_layer_sizes', _hidden_layers), 'penalty': ('alpha', float),
            'epochs': ('max_iter', int), 'learn_rate': ('learning_rate_init', float)}),
    }

    FAMILIES = {'regression': REGRESSION, 'classification': CLASSIFICATION}

    @classmethod
    def _entry(cls, family: str, mode: str) -> Tuple[type, Dict[str, Tuple[str, Callable]]]:
        try:
            return cls.FAMILIES[mode][family]
        except KeyError:
            raise ConfigurationSpaceError(
                f"Unknown model family: {family} (mode={mode}). Available: {cls.get_available_models(mode)}"
            )

    @classmethod
    def parameter_names(cls, family: str, mode: str = 'regression') -> List[str]:
        return list(cls._entry(family, mode)[1].keys())

    @classmethod
    def create(cls, spec: ModelSpec, seed: Optional[int] = None) -> Any:
        """
        Create and return an unfitted estimator for a resolved ModelSpec.
        """
        model_class, translation = cls._entry(spec.family, spec.mode)
        kwargs = {}
        for name, value in spec.fixed_values().items():
            arg, convert = translation[name]
            kwargs[arg] = convert(value)
        if seed is not None and 'random_state' in cls._accepted(model_class):
            kwargs.setdefault('random_state', seed)
        if model_class in (SVC,) and spec.mode == 'classification':
            kwargs.setdefault('probability', True)
        return model_class(**cls._filter_params(model_class, kwargs))

    @classmethod
    def get_available_models(cls, mode: str = 'regression') -> List[str]:
        """Return list of all supported family names for a mode."""
        return list(cls.FAMILIES.get(mode, {}).keys())

    @staticmethod
    def _accepted(model_class) -> List[str]:
        sig = inspect.signature(model_class.__init__)
        return [
            p.name for p in sig.parameters.values()
            if p.kind in (p.POSITIONAL_OR_KEYWORD, p.KEYWORD_ONLY)
        ]

    @classmethod
    def _filter_params(cls, model_class, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Remove parameters from `params` that are not accepted by `model_class` constructor.
        """
        sig = inspect.signature(model_class.__init__)
        has_kwargs = any(p.kind == p.VAR_KEYWORD for p in sig.parameters.values())
        if has_kwargs:
            return params
        valid_keys = cls._accepted(model_class)
        return {k: v for k, v in params.items() if k in valid_keys}


class FittedModel:
    """A fitted estimator plus the feature order it was trained on."""

    def __init__(self, estimator: Any, features: List[str], mode: str):
        self.estimator = estimator
        self.features = features
        self.mode = mode

    @property
    def classes(self) -> Optional[np.ndarray]:
        return getattr(self.estimator, 'classes_', None)


class ModelEngine:
    """
    The only model interface the resampling machinery depends on:
    ``fit(spec, X, y) -> FittedModel`` and ``predict(model, X) -> ndarray``.
    """

    @staticmethod
    def fit(spec: ModelSpec, X: pd.DataFrame, y, seed: Optional[int] = None) -> FittedModel:
        if X.shape[1] == 0:
            raise ConfigurationSpaceError("No predictor columns left to fit on.")
        estimator = ModelFactory.create(spec, seed=seed)
        estimator.fit(X.to_numpy(dtype=float), np.asarray(y))
        return FittedModel(estimator, list(X.columns), spec.mode)

    @staticmethod
    def _matrix(model: FittedModel, X: pd.DataFrame) -> np.ndarray:
        missing = [c for c in model.features if c not in X.columns]
        if missing:
            raise ValueError(f"Missing features required by the model: {missing}")
        return X[model.features].to_numpy(dtype=float)

    @classmethod
    def predict(cls, model: FittedModel, X: pd.DataFrame) -> np.ndarray:
        return np.asarray(model.estimator.predict(cls._matrix(model, X)))

    @classmethod
    def predict_scores(cls, model: FittedModel, X: pd.DataFrame) -> Optional[np.ndarray]:
        """Probability of the last class for binary classifiers; None otherwise."""
        if model.mode != 'classification' or not hasattr(model.estimator, 'predict_proba'):
            return None
        proba = model.estimator.predict_proba(cls._matrix(model, X))
        if proba.shape[1] != 2:
            return None
        return proba[:, 1]
