import numpy as np
import pandas as pd

from growth_modeler import compute_tangent, inverse_predict, modeler, predict
from growth_modeler.curves.logistic import logistic_func

rng = np.random.default_rng(1)
t = np.linspace(0.0, 100.0, 26)
data = pd.concat(
    [
        pd.DataFrame(
            {"uid": uid, "x": t, "y": logistic_func(t, a, 50.0, 90.0) + rng.normal(0, 1.5, t.size)}
        )
        for uid, a in (("early", 0.18), ("late", 0.09))
    ],
    ignore_index=True,
)

fits = modeler(data, curve="logistic", method=["nelder-mead", "least_squares"])

print(predict(fits, [25.0, 50.0, 75.0]))
print(predict(fits, [25.0, 50.0, 75.0], interval="prediction"))
print(predict(fits, type="auc"))
print(predict(fits, [50.0], type="fd"))
print(predict(fits, type="formula", formula=lambda p: p["a"] * p["k"] / 4, label="max_rate"))
print(inverse_predict(fits, 45.0))
print(compute_tangent(fits, pd.DataFrame({"uid": ["early", "late"], "x": [50.0, 55.0]})))
