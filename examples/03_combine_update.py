import numpy as np
import pandas as pd

from growth_modeler import anova, combine, modeler
from growth_modeler.curves.polynomial import quad_func

rng = np.random.default_rng(2)
x = np.linspace(0.0, 20.0, 15)
data = pd.concat(
    [
        pd.DataFrame({"uid": f"s{i}", "x": x, "y": quad_func(x, 0.05 * i, 1.0, 2.0) + rng.normal(0, 0.5, x.size)})
        for i in range(4)
    ],
    ignore_index=True,
)

lin_fits = modeler(data, curve="lin")
quad_fits = modeler(data, curve="quad")

print(anova(lin_fits, quad_fits))
print(lin_fits.aic().merge(quad_fits.aic(), on="uid", suffixes=("_lin", "_quad")))

# Re-fit from the current estimates with a different optimiser.
refit = quad_fits.update(method=["powell"])
print(refit.parameter_table())

both = combine(lin_fits, quad_fits, keys=["lin", "quad"])
print(both.curves, len(both))
print(both.subset(["quad/s3"]).coefficients())
