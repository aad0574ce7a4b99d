"""步骤定义

Step 是幂等的最小工作单元：precondition 查询现状，已满足则跳过；
否则执行 action，再由 postcondition 确认外部工具确实达到了目标状态。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

Check = Callable[[], bool]
Action = Callable[[], None]


@dataclass(frozen=True)
class Step:
    """幂等步骤

    precondition 必须无副作用；postcondition 缺省时复用 precondition。
    """

    name: str
    precondition: Check
    action: Action
    postcondition: Check | None = None
    depends_on: frozenset[str] = field(default_factory=frozenset)
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("步骤名不能为空")
        # 允许传入 list / tuple，统一为 frozenset
        object.__setattr__(self, "depends_on", frozenset(self.depends_on))

    def verify(self) -> bool:
        check = self.postcondition or self.precondition
        return check()
