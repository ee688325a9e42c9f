"""
Python <-> R value conversion.

rpy2 is imported lazily inside each function so that merbridge itself can be
imported (and its bridge-free parts used) on machines without R.
"""

from collections.abc import Mapping

import numpy as np
import pandas as pd

from ..types.errors import ConfigurationError


def _prepare_frame(df: pd.DataFrame) -> pd.DataFrame:
    """
    Make a DataFrame safe for pandas2ri.

    Column names become strings, nullable string columns become object
    columns, and the index is replaced by a plain range. Categorical columns
    are left alone so their level labels arrive in R as factor levels.
    """
    names = [str(c) for c in df.columns]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise ConfigurationError(f"Data has duplicate column names: {dupes}")

    out = df.copy()
    out.columns = names
    for col in names:
        if pd.api.types.is_string_dtype(out[col].dtype) and not isinstance(
            out[col].dtype, pd.CategoricalDtype
        ):
            out[col] = out[col].astype(object)
    return out.reset_index(drop=True)


def py_to_r(obj):
    """
    Convert arbitrary Python objects into R objects.

    - None -> NULL
    - pandas.DataFrame -> data.frame (categoricals -> factors, levels kept)
    - dict -> R named list (ListVector), recursively
    - list/tuple:
        * list of dicts -> R list of named lists
        * otherwise -> let rpy2 default converter handle
    - numpy arrays, scalars, strings, etc:
        -> let rpy2 default converter handle
    """
    import rpy2.robjects as ro
    from rpy2.robjects import ListVector, default_converter, numpy2ri, pandas2ri
    from rpy2.robjects.conversion import localconverter

    with localconverter(default_converter + pandas2ri.converter + numpy2ri.converter) as cv:
        if obj is None:
            return ro.NULL

        if isinstance(obj, pd.DataFrame):
            return cv.py2rpy(_prepare_frame(obj))

        if isinstance(obj, Mapping):
            converted = {str(k): py_to_r(v) for k, v in obj.items()}
            return ListVector(converted)

        if isinstance(obj, (list, tuple)):
            if not obj:
                return ListVector({})

            if all(isinstance(el, Mapping) for el in obj):
                # R lists are usually named or indexed; use 1-based index names
                converted = {str(i + 1): py_to_r(el) for i, el in enumerate(obj)}
                return ListVector(converted)

            return cv.py2rpy(np.asarray(obj))

        return cv.py2rpy(obj)


def _is_na(value) -> bool:
    import rpy2.robjects as ro

    return any(
        value is na
        for na in (ro.NA_Character, ro.NA_Integer, ro.NA_Real, ro.NA_Logical)
    )


def _scalar(value):
    if _is_na(value):
        return None
    if isinstance(value, float) and np.isnan(value):
        return None
    return value


def r_to_py(obj):
    """
    Generic R -> Python converter.

    Rules:
    - NULL -> None
    - data.frame -> pandas.DataFrame (factors -> categoricals)
    - factor -> list of level labels
    - Named ListVector -> dict
    - Unnamed ListVector -> list
    - Atomic Vector length 1 -> Python scalar (NA -> None)
    - Atomic Vector length >1 -> Python list of scalars
    - Other objects -> fallback: Python repr string
      (safe for formulas, language objects, etc.)
    """
    import rpy2.robjects as ro
    from rpy2.robjects import default_converter, pandas2ri, vectors
    from rpy2.robjects.conversion import localconverter
    from rpy2.robjects.functions import SignatureTranslatedFunction

    if obj is ro.NULL:
        return None

    if isinstance(obj, vectors.DataFrame):
        with localconverter(default_converter + pandas2ri.converter) as cv:
            return cv.rpy2py(obj)

    if isinstance(obj, vectors.FactorVector):
        levels = list(obj.levels)
        labels = [None if _is_na(code) else levels[code - 1] for code in obj]
        return labels[0] if len(labels) == 1 else labels

    if isinstance(obj, vectors.Vector) and not isinstance(obj, vectors.ListVector):
        values = [_scalar(el) for el in obj]
        if len(values) == 1:
            return values[0]
        return values

    if isinstance(obj, vectors.ListVector):
        names = list(obj.names) if obj.names is not ro.NULL else None

        # Named list -> dict
        if names and any(n is not ro.NULL and n != "" for n in names):
            return {str(name): r_to_py(el) for name, el in zip(names, obj)}

        return [r_to_py(el) for el in obj]

    if isinstance(obj, (ro.Formula, ro.language.LangVector, SignatureTranslatedFunction)):
        return str(obj)

    try:
        with localconverter(default_converter) as cv:
            return cv.rpy2py(obj)
    except Exception:
        return str(obj)
