from collections import OrderedDict
from typing import Dict, Mapping

import torch

from splatfit.config import ModelConfig

# Fixed fan-out order for zero_grad / step.
PARAM_GROUPS = (
    "means",
    "scales",
    "quats",
    "features_dc",
    "features_rest",
    "opacities",
)


class OptimizerSet:
    """One Adam optimizer per Gaussian parameter group."""

    def __init__(self, params: Mapping[str, torch.Tensor], config: ModelConfig):
        missing = [name for name in PARAM_GROUPS if name not in params]
        if missing:
            raise KeyError(f"Missing parameter groups for optimizers: {missing}")

        self.optimizers: "OrderedDict[str, torch.optim.Optimizer]" = OrderedDict()
        for name in PARAM_GROUPS:
            self.optimizers[name] = torch.optim.Adam(
                [params[name]],
                lr=getattr(config, f"{name}_lr"),
                eps=config.adam_eps,
            )

    def __getitem__(self, name: str) -> torch.optim.Optimizer:
        return self.optimizers[name]

    def __iter__(self):
        return iter(self.optimizers.items())

    def zero_grad(self) -> None:
        for optimizer in self.optimizers.values():
            optimizer.zero_grad()

    def step(self) -> None:
        for optimizer in self.optimizers.values():
            optimizer.step()

    def learning_rates(self) -> Dict[str, float]:
        return {
            name: optimizer.param_groups[0]["lr"]
            for name, optimizer in self.optimizers.items()
        }

    def state_dict(self) -> Dict[str, dict]:
        return {name: opt.state_dict() for name, opt in self.optimizers.items()}

    def load_state_dict(self, state: Mapping[str, dict]) -> None:
        for name, optimizer in self.optimizers.items():
            optimizer.load_state_dict(state[name])
