import logging
import os
import threading
from concurrent.futures import Future
from typing import Any, Dict, Optional

import joblib
import numpy as np

from golazo.core.config import FusionConfig
from golazo.core.features import FeatureExtractor
from golazo.core.models import FixtureSnapshot, MarketId, MarketPrediction, PotentialScore
from golazo.core.rules import RuleEngine
from golazo.utils.errors import ModelError

log = logging.getLogger("golazo.predictors")

POTENTIAL_MODEL = "potential"


def certainty_confidence(probability: float) -> float:
    """Predictions far from 0.5 are trusted more; capped to [0.5, 0.9]."""
    conf = 0.5 + abs(probability - 0.5) * 2 * 0.4
    return max(0.5, min(0.9, conf))


class LearnedEstimator:
    """Thin wrapper over a persisted scikit-learn style binary classifier."""

    def __init__(self, name: str, model: Any):
        if not hasattr(model, "predict_proba"):
            raise ModelError(f"{name}: estimator has no predict_proba")
        self.name = name
        self.model = model

    def probability(self, features: np.ndarray) -> float:
        try:
            proba = np.asarray(self.model.predict_proba(features.reshape(1, -1)), dtype=np.float64)
        except Exception as e:
            raise ModelError(f"{self.name}: predict_proba failed: {e}") from e

        if proba.ndim != 2 or proba.shape[0] < 1 or proba.shape[1] < 1:
            raise ModelError(f"{self.name}: unexpected output shape {proba.shape}")

        classes = list(getattr(self.model, "classes_", []))
        column = classes.index(1) if 1 in classes else proba.shape[1] - 1
        p = float(proba[0, column])
        if not np.isfinite(p) or p < 0.0 or p > 1.0:
            raise ModelError(f"{self.name}: invalid probability {p!r}")
        return p

    def predict(self, features: np.ndarray) -> MarketPrediction:
        p = self.probability(features)
        return MarketPrediction(probability=p, confidence=certainty_confidence(p))


def load_estimator(models_dir: str, name: str) -> Optional[LearnedEstimator]:
    """Load ``<models_dir>/<name>.joblib``; None when no model is shipped."""
    path = os.path.join(models_dir, f"{name}.joblib")
    if not os.path.exists(path):
        return None
    try:
        data = joblib.load(path)
    except Exception as e:
        raise ModelError(f"{name}: failed to load {path}: {e}") from e
    model = data.get("model") if isinstance(data, dict) else data
    if model is None:
        raise ModelError(f"{name}: {path} holds no model")
    return LearnedEstimator(name, model)


class PredictionFusionEngine:
    """Blends learned estimators with the rule engine, per market.

    Estimators are loaded lazily, once per market: the first caller performs
    the load and concurrent callers wait on the same in-flight result.
    """

    def __init__(self, config: Optional[FusionConfig] = None,
                 rules: Optional[RuleEngine] = None,
                 extractor: Optional[FeatureExtractor] = None,
                 loader=load_estimator):
        self.config = config or FusionConfig()
        self.rules = rules or RuleEngine()
        self.extractor = extractor or FeatureExtractor()
        self._loader = loader
        self._lock = threading.Lock()
        self._loads: Dict[str, Future] = {}

    def _estimator(self, name: str) -> Optional[LearnedEstimator]:
        if not self.config.enabled:
            return None

        with self._lock:
            future = self._loads.get(name)
            owner = future is None
            if owner:
                future = Future()
                self._loads[name] = future

        if owner:
            try:
                estimator = self._loader(self.config.models_dir, name)
                if estimator is None:
                    log.info("[FUSION] No learned model for %s, using rules only", name)
                else:
                    log.info("[FUSION] Loaded learned model for %s", name)
                future.set_result(estimator)
            except Exception as e:
                log.warning("[FUSION] Model for %s unavailable: %s", name, e)
                future.set_result(None)

        return future.result()

    def reload(self):
        """Forget loaded estimators; the next prediction loads them again."""
        with self._lock:
            self._loads.clear()
        log.info("[FUSION] Estimator cache cleared")

    def loaded_markets(self):
        with self._lock:
            done = {k: f for k, f in self._loads.items() if f.done()}
        return sorted(k for k, f in done.items() if f.result() is not None)

    def fuse(self, ml: MarketPrediction, rules: MarketPrediction) -> MarketPrediction:
        """Confidence-weighted blend of a learned and a rule prediction."""
        w_ml, w_rules = self.config.ml_weight, self.config.rules_weight
        ml_weight = w_ml * ml.confidence
        rules_weight = w_rules * rules.confidence
        total = ml_weight + rules_weight
        if total <= 0:
            return rules
        probability = (ml.probability * ml_weight + rules.probability * rules_weight) / total
        confidence = max(ml.confidence * w_ml, rules.confidence * w_rules)
        return MarketPrediction(
            probability=max(0.0, min(1.0, probability)),
            confidence=max(0.0, min(1.0, confidence)),
        )

    def predict(self, market: MarketId, snapshot: FixtureSnapshot) -> MarketPrediction:
        """Rules alone, or rules fused with the market's learned estimator."""
        rules = self.rules.evaluate(market, snapshot)
        if rules.resolved:
            return rules

        estimator = self._estimator(market.value)
        if estimator is None:
            return rules

        try:
            features = self.extractor.extract(snapshot, market)
            ml = estimator.predict(features)
        except Exception as e:
            log.warning("[FUSION] %s model failed for %s, falling back to rules: %s",
                        market.value, snapshot.fixture_id, e)
            return rules

        fused = self.fuse(ml, rules)
        log.debug("[FUSION] %s %s ml=%s rules=%s fused=%s",
                  snapshot.fixture_id, market.value, ml, rules, fused)
        return fused

    def predict_potential(self, snapshot: FixtureSnapshot) -> PotentialScore:
        estimator = self._estimator(POTENTIAL_MODEL)
        if estimator is not None:
            try:
                features = self.extractor.extract(snapshot, None)
                return PotentialScore(score=estimator.probability(features), source="model")
            except Exception as e:
                log.warning("[FUSION] Potential model failed for %s: %s", snapshot.fixture_id, e)
        return PotentialScore(score=self.rules.predict_potential(snapshot), source="rules")
