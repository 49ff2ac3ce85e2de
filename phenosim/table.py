import os
import re
import math
import pandas as pd
import numpy as np
from typing import List, Optional

from phenosim.log import logger
from scipy import stats as sstats


# ------------------------
# Helpers
# ------------------------

def _infer_sep_from_ext(path: str) -> str:
	lower = (path or "").lower()
	if lower.endswith(".csv"):
		return ","
	# default treat .tsv/.txt as tab
	return "\t"


def _normalize_sep(sep: Optional[str], path: Optional[str]) -> str:
	if sep in (None, "auto"):
		return _infer_sep_from_ext(path or "")
	if sep.lower() in {"csv", ","}:
		return ","
	if sep.lower() in {"tsv", "tab", "\t"}:
		return "\t"
	return sep


def read_table(path: str, sep: Optional[str] = None, header: bool = True, encoding: str = "utf-8") -> pd.DataFrame:
	if not os.path.isfile(path):
		raise ValueError(f"Input not found: {path}")
	use_sep = _normalize_sep(sep, path)
	try:
		df = pd.read_csv(path, sep=use_sep, header=0 if header else None, encoding=encoding)
	except Exception as e:
		raise ValueError(f"Failed to read table: {path} ({e})")
	return df


def write_table(df: pd.DataFrame, path: str, sep: Optional[str] = None, header: bool = True, index: bool = False, encoding: str = "utf-8") -> str:
	os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
	use_sep = _normalize_sep(sep, path)
	df.to_csv(path, sep=use_sep, header=header, index=index, encoding=encoding, lineterminator="\n")
	return path


def read_geno(path: str, sep: Optional[str] = None) -> np.ndarray:
	"""Read a markers x individuals dosage matrix without header; empty cells and NA become NaN."""
	df = read_table(path, sep=sep, header=False)
	return df.apply(pd.to_numeric, errors="coerce").to_numpy(dtype=float)


def select_columns(df: pd.DataFrame, columns_regex: Optional[str], exclude: Optional[List[str]] = None) -> List[str]:
	cols = [c for c in df.columns if c not in (exclude or [])]
	if columns_regex:
		pat = re.compile(columns_regex)
		cols = [c for c in cols if pat.search(str(c))]
	return cols


# ------------------------
# Summary
# ------------------------

def summarize_series(s: pd.Series) -> dict:
	"""Descriptive statistics and normality tests of one numeric column."""
	s_num = pd.to_numeric(s, errors="coerce")
	n = int(s_num.shape[0])
	n_miss = int(s_num.isna().sum())
	s_clean = s_num.dropna()
	n_clean = int(s_clean.shape[0])

	mean = float(s_clean.mean()) if n_clean else float("nan")
	std = float(s_clean.std()) if n_clean > 1 else float("nan")
	skew = float(s_clean.skew()) if n_clean > 2 else float("nan")
	kurt = float(s_clean.kurt()) if n_clean > 3 else float("nan")
	cv = float(std / abs(mean)) if (not math.isnan(std) and not math.isnan(mean) and abs(mean) > 1e-12) else float("nan")
	constant = n_clean > 0 and s_clean.nunique() == 1

	# D'Agostino's K^2 requires n >= 8
	if n_clean >= 8 and not constant:
		nt_stat, nt_p = sstats.normaltest(s_clean.values)
	else:
		nt_stat, nt_p = float("nan"), float("nan")

	# Shapiro-Wilk: practical range 3 <= n <= 5000
	if 3 <= n_clean <= 5000 and not constant:
		sh_stat, sh_p = sstats.shapiro(s_clean.values)
	else:
		sh_stat, sh_p = float("nan"), float("nan")

	if n_clean >= 2 and not constant:
		jb_stat, jb_p = sstats.jarque_bera(s_clean.values)
	else:
		jb_stat, jb_p = float("nan"), float("nan")

	return {
		"count": n,
		"missing": n_miss,
		"mean": mean,
		"std": std,
		"var": std ** 2,
		"cv": cv,
		"min": float(s_clean.min()) if n_clean else float("nan"),
		"median": float(s_clean.median()) if n_clean else float("nan"),
		"max": float(s_clean.max()) if n_clean else float("nan"),
		"skew": skew,
		"kurtosis": kurt,
		"normaltest_stat": float(nt_stat),
		"normaltest_p": float(nt_p),
		"shapiro_stat": float(sh_stat),
		"shapiro_p": float(sh_p),
		"jb_stat": float(jb_stat),
		"jb_p": float(jb_p),
	}


def summarize_table(df: pd.DataFrame, columns: Optional[List[str]] = None) -> pd.DataFrame:
	"""One row of summary statistics per column."""
	if columns is None:
		columns = df.select_dtypes(include=[np.number]).columns.tolist()
	if not columns:
		raise ValueError("No numeric columns selected for statistics")
	rows = []
	for col in columns:
		rows.append({"column": col, **summarize_series(df[col])})
	logger.info(f"Summarized {len(columns)} columns")
	return pd.DataFrame(rows)


def variance_summary(info_tr: dict) -> pd.DataFrame:
	"""Flatten the variance summary of a phenotype result into a table."""
	if "Covg" in info_tr:
		traits = list(info_tr["h2"].index)
		return pd.DataFrame({
			"trait": traits,
			"Vg": np.diag(info_tr["Covg"].to_numpy()),
			"Ve": np.diag(np.asarray(info_tr["Cove"], dtype=float)),
			"h2": info_tr["h2"].to_numpy(),
		})
	vg = info_tr["Vg"]
	rows = [{"component": c, "variance": float(vg[c]), "h2": float(info_tr["h2"][c])} for c in vg.index]
	rows.append({"component": "ind_env", "variance": float(info_tr["Ve"]), "h2": float("nan")})
	return pd.DataFrame(rows)
