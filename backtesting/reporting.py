"""
Backtest Reporting
==================

Renders a RunResult as JSON or as a plain-text summary.

Author: Algo Trading Platform
License: MIT
"""

from __future__ import annotations

import json
from pathlib import Path

from backtesting.engine import RunResult
from config.settings import REPORTS_DIR
from utils.logger import get_logger

logger = get_logger(__name__)


class ReportGenerator:
    """Generate backtest reports in various formats."""

    def __init__(self, result: RunResult, include_snapshots: bool = True):
        """
        Args:
            result: Finished (or cancelled) run
            include_snapshots: Keep the snapshot list in JSON output
        """
        self.result = result
        self.include_snapshots = include_snapshots

    def to_json(self, path: Path | str | None = None) -> str:
        """
        Generate JSON report.

        Args:
            path: File to write; a bare file name is placed under ``reports/``

        Returns:
            The JSON document
        """
        data = self.result.to_dict()
        if not self.include_snapshots:
            data.pop("snapshots", None)

        json_str = json.dumps(data, indent=2, default=str)

        if path:
            path = Path(path)
            if not path.is_absolute() and path.parent == Path("."):
                path = REPORTS_DIR / path
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json_str)
            logger.info(f"Report written to {path}")

        return json_str

    def to_text(self) -> str:
        """Generate text summary report."""
        r = self.result
        m = r.metrics
        name = (r.config.name or r.run_id) if r.config else r.run_id

        lines = [
            "=" * 60,
            f"BACKTEST REPORT: {name}",
            "=" * 60,
            "",
            "RUN",
            f"  State:             {r.state.value}",
            f"  Bars Processed:    {r.bars_processed}/{r.total_bars}",
            f"  Start:             {r.start_time}",
            f"  End:               {r.end_time}",
            f"  Initial Capital:   ${r.initial_capital:,.2f}",
            f"  Final Value:       ${r.final_value:,.2f}",
            "",
            "RETURNS",
            f"  Total Return:      ${m.total_return:,.2f} ({m.total_return_pct:.2%})",
            f"  Annualized Return: {m.annualized_return:.2%}",
            f"  Best Month:        {m.best_month:.2%}",
            f"  Worst Month:       {m.worst_month:.2%}",
            "",
            "RISK",
            f"  Volatility:        {m.volatility:.2%}",
            f"  Max Drawdown:      {m.max_drawdown:.2%}",
            f"  DD Duration:       {m.max_drawdown_duration_days:.1f} days",
            f"  VaR (95%):         {m.var_95:.2%}",
            f"  CVaR (95%):        {m.cvar_95:.2%}",
            "",
            "RISK-ADJUSTED",
            f"  Sharpe Ratio:      {m.sharpe_ratio:.2f}",
            f"  Sortino Ratio:     {m.sortino_ratio:.2f}",
            f"  Calmar Ratio:      {m.calmar_ratio:.2f}",
            "",
            "TRADES",
            f"  Total Trades:      {m.total_trades}",
            f"  Win Rate:          {m.win_rate:.2%}",
            f"  Profit Factor:     {m.profit_factor:.2f}",
            f"  Avg Trade:         ${m.average_trade:.2f}",
            f"  Expectancy:        ${m.expectancy:.2f}",
            f"  SQN:               {m.sqn:.2f}",
            "",
            "EXECUTION",
            f"  Fill Rate:         {m.fill_rate:.2%}",
            f"  Avg Slippage:      {m.average_slippage_bps:.1f} bps",
            f"  Commission:        ${m.total_commission:,.2f}",
        ]

        if r.warnings or r.errors:
            lines += [
                "",
                "LOG",
                f"  Warnings:          {len(r.warnings)}",
                f"  Errors:            {len(r.errors)}",
            ]
        if r.stop_reason:
            lines.append(f"  Stopped:           {r.stop_reason}")

        lines += ["", "=" * 60]
        return "\n".join(lines)

    def print_summary(self) -> None:
        """Print text summary to console."""
        print(self.to_text())


__all__ = ["ReportGenerator"]
