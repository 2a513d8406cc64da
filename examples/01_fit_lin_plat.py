import logging

import numpy as np
import pandas as pd

from growth_modeler import modeler
from growth_modeler.curves.plateau import lin_plat_func

logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

rng = np.random.default_rng(0)
dap = np.arange(0.0, 110.0, 10.0)

rows = []
for plot in range(6):
    t1 = rng.uniform(25, 40)
    t2 = t1 + rng.uniform(25, 40)
    canopy = lin_plat_func(dap, t1, t2, 100.0) + rng.normal(0, 2.0, size=dap.size)
    rows.append(
        pd.DataFrame({"plot": plot, "dap": dap, "canopy": canopy, "genotype": f"G{plot % 3}"})
    )
data = pd.concat(rows, ignore_index=True)

# Canopy cover saturates at 100%, so k is fixed and only the breakpoints are fitted.
fits = modeler(
    data,
    x="dap",
    y="canopy",
    grp="plot",
    curve="lin_plat",
    parameters={"t1": 45, "t2": 80},
    fixed_params={"k": 100},
    keep="genotype",
    max_as_last=True,
    check_negative=True,
)

print(fits.summary(digits=4, max_groups=3))
print(fits.coefficients(metadata=True).round(3))
print(fits.confint(level=0.9, parm="t2").round(2))
print(fits.metrics(by_group=False).round(3))
