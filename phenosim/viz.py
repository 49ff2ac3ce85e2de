import numpy as np
import pandas as pd
from scipy.stats import gaussian_kde
import matplotlib as mpl
mpl.use('Agg')
import matplotlib.pyplot as plt

from phenosim.log import logger
from typing import List, Optional


class Visualizer:
    def __init__(self):
        pass

    def plot_dist(self, df, kind='box', columns=None, colors=None,
                  alpha=0.7, orientation='vertical', bins=30, density=False,
                  xlabel=None, ylabel=None, ax=None):
        """
        Plot distribution of data in DataFrame columns using different visualization methods.

        :param df: DataFrame containing data to plot
        :param kind: Type of plot ('box', 'violin', 'hist', 'kde')
        :param columns: List of column names to plot. If None, use all numeric columns
        :param colors: List of colors for each column. If None, use default matplotlib colors
        :param alpha: Transparency level for plots (0-1)
        :param orientation: Plot orientation ('vertical' or 'horizontal')
        :param bins: Number of bins for histogram (default: 30)
        :param density: Whether to show density instead of count for histogram (default: False)
        :param xlabel: Custom label for x-axis
        :param ylabel: Custom label for y-axis
        :param ax: Matplotlib Axes object for plotting.
        """
        logger.info(f"Plotting distribution using {kind} plot...")

        if ax is None:
            raise ValueError("Please provide a valid Matplotlib Axes object for plotting.")

        if columns is None:
            columns = df.select_dtypes(include=[np.number]).columns.tolist()
        else:
            missing_cols = [col for col in columns if col not in df.columns]
            if missing_cols:
                raise ValueError(f"Columns not found in DataFrame: {missing_cols}")

        if not columns:
            raise ValueError("No numeric columns found in DataFrame")

        if colors is None:
            colors = [f"C{i}" for i in range(len(columns))]
        elif len(colors) < len(columns):
            colors = (colors * ((len(columns) // len(colors)) + 1))[:len(columns)]

        plot_data = df[columns]
        vert = orientation == 'vertical'

        if kind == 'box':
            data = [plot_data[col].dropna().values for col in columns]
            box_plot = ax.boxplot(data, vert=vert, patch_artist=True, showmeans=True,
                                  meanprops=dict(marker='D', markeredgecolor='black',
                                                 markerfacecolor='white', markersize=5))
            for patch, color in zip(box_plot['boxes'], colors):
                patch.set_facecolor(color)
                patch.set_alpha(alpha)
            self._set_ticklabels(ax, columns, vert)
        elif kind == 'violin':
            data = [plot_data[col].dropna().values for col in columns]
            parts = ax.violinplot(data, positions=range(1, len(columns) + 1), vert=vert, showmedians=True)
            for pc, color in zip(parts['bodies'], colors):
                pc.set_facecolor(color)
                pc.set_alpha(alpha)
            self._set_ticklabels(ax, columns, vert)
        elif kind == 'hist':
            for col, color in zip(columns, colors):
                ax.hist(plot_data[col].dropna().values, bins=bins, density=density, color=color,
                        alpha=alpha, label=col, orientation='vertical' if vert else 'horizontal')
        elif kind == 'kde':
            for col, color in zip(columns, colors):
                values = plot_data[col].dropna().values
                # a constant column has a singular KDE
                if len(values) < 2 or np.ptp(values) == 0:
                    logger.warning(f"Column '{col}' has no spread, skipped in KDE plot")
                    continue
                x = np.linspace(values.min(), values.max(), 200)
                y = gaussian_kde(values)(x)
                if vert:
                    ax.plot(x, y, color=color, alpha=alpha, linewidth=2, label=col)
                    ax.fill_between(x, y, alpha=alpha * 0.3, color=color)
                else:
                    ax.plot(y, x, color=color, alpha=alpha, linewidth=2, label=col)
                    ax.fill_betweenx(x, y, alpha=alpha * 0.3, color=color)
        else:
            raise ValueError(f"Invalid kind: {kind}. Choose from 'box', 'violin', 'hist', 'kde'")

        ax.set_xlabel(xlabel)
        ax.set_ylabel(ylabel)
        ax.set_title(f'{kind.capitalize()} Plot')
        ax.spines[['top', 'right']].set_visible(False)

        if len(columns) > 1 and kind in ['hist', 'kde']:
            ax.legend(frameon=False)

    @staticmethod
    def _set_ticklabels(ax, columns, vert):
        ticks = range(1, len(columns) + 1)
        if vert:
            ax.set_xticks(ticks)
            ax.set_xticklabels(columns)
            if len(columns) > 5:
                ax.tick_params(axis='x', rotation=45)
        else:
            ax.set_yticks(ticks)
            ax.set_yticklabels(columns)

    def plot_variance(self, variance: pd.Series, colors: Optional[List[str]] = None, ax=None):
        """
        Horizontal stacked bar of the share of every variance component in the phenotype variance.

        :param variance: component name -> variance
        :param ax: Matplotlib Axes object for plotting.
        """
        if ax is None:
            raise ValueError("Please provide a valid Matplotlib Axes object for plotting.")
        variance = variance[variance > 0]
        if variance.empty:
            raise ValueError("No positive variance component to plot")
        share = variance / variance.sum()
        if colors is None:
            colors = [f"C{i}" for i in range(len(share))]
        left = 0.0
        for (name, value), color in zip(share.items(), colors):
            ax.barh(0, value, left=left, color=color, edgecolor='white', label=f"{name} ({value:.2f})")
            left += value
        ax.set_xlim(0, 1)
        ax.set_yticks([])
        ax.set_xlabel('Proportion of phenotype variance')
        ax.spines[['top', 'right', 'left']].set_visible(False)
        ax.legend(frameon=False, loc='upper center', bbox_to_anchor=(0.5, -0.3), ncol=min(len(share), 4))

    def save(self, fig, path: str, dpi: int = 300):
        plt.tight_layout()
        fig.savefig(path, dpi=dpi, bbox_inches="tight")
        plt.close(fig)
        logger.info(f"Figure saved to: {path}")
        return path
