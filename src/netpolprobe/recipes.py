"""Built-in recipes — common NetworkPolicy patterns with their expected outcome.

Each recipe pairs a few policy manifests with a synthetic topology and a
probe target, and runs through the simulated runner only.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from netpolprobe.policy.compiler import PolicyModel, compile_model
from netpolprobe.policy.loader import load_policies_from_string
from netpolprobe.policy.models import NetworkPolicy
from netpolprobe.probe.models import ProbeMode, ProbeSpec
from netpolprobe.probe.runner import SimulatedRunner
from netpolprobe.topology.models import Protocol, Topology
from netpolprobe.truthtable.table import TruthTable


def _topology_with_ports(*ports: int) -> Topology:
    return Topology.generate(
        namespaces=("x", "y", "z"),
        pods=("a", "b", "c"),
        ports=ports,
        protocols=(Protocol.TCP, Protocol.UDP),
    )


def _default_topology() -> Topology:
    return _topology_with_ports(80, 81)


@dataclass(frozen=True)
class Recipe:
    """Policies plus the resources and probe target they are demonstrated on."""

    name: str
    description: str
    policy_yamls: tuple[str, ...]
    resources: Topology = field(default_factory=_default_topology, compare=False)
    protocol: Protocol = Protocol.TCP
    port: int = 80

    def policies(self) -> list[NetworkPolicy]:
        policies: list[NetworkPolicy] = []
        for text in self.policy_yamls:
            policies.extend(load_policies_from_string(text))
        return policies

    def model(self) -> PolicyModel:
        return compile_model(self.policies(), self.resources)

    def run_probe(self) -> TruthTable:
        runner = SimulatedRunner(self.model())
        spec = ProbeSpec(port=self.port, protocol=self.protocol, mode=ProbeMode.SERVICE_NAME)
        return runner.run(self.resources, spec)


DENY_ALL_TO_A = """
apiVersion: networking.k8s.io/v1
kind: NetworkPolicy
metadata:
  name: deny-all-to-a
  namespace: x
spec:
  podSelector:
    matchLabels:
      pod: a
  ingress: []
"""

ALLOW_B_TO_A = """
apiVersion: networking.k8s.io/v1
kind: NetworkPolicy
metadata:
  name: allow-b-to-a
  namespace: x
spec:
  podSelector:
    matchLabels:
      pod: a
  ingress:
    - from:
        - podSelector:
            matchLabels:
              pod: b
"""

ALLOW_ALL_TO_A = """
apiVersion: networking.k8s.io/v1
kind: NetworkPolicy
metadata:
  name: allow-all-to-a
  namespace: x
spec:
  podSelector:
    matchLabels:
      pod: a
  ingress:
    - {}
"""

DENY_OTHER_NAMESPACES = """
apiVersion: networking.k8s.io/v1
kind: NetworkPolicy
metadata:
  name: deny-from-other-namespaces
  namespace: x
spec:
  podSelector: {}
  ingress:
    - from:
        - podSelector: {}
"""

ALLOW_FROM_NAMESPACE_Y = """
apiVersion: networking.k8s.io/v1
kind: NetworkPolicy
metadata:
  name: allow-from-y
  namespace: x
spec:
  podSelector:
    matchLabels:
      pod: a
  ingress:
    - from:
        - namespaceSelector:
            matchLabels:
              ns: y
"""

ALLOW_C_IN_Z = """
apiVersion: networking.k8s.io/v1
kind: NetworkPolicy
metadata:
  name: allow-c-in-z
  namespace: x
spec:
  podSelector:
    matchLabels:
      pod: a
  ingress:
    - from:
        - namespaceSelector:
            matchLabels:
              ns: z
          podSelector:
            matchExpressions:
              - {key: pod, operator: In, values: [c]}
"""

ALLOW_NAMED_PORT = """
apiVersion: networking.k8s.io/v1
kind: NetworkPolicy
metadata:
  name: allow-serve-81
  namespace: x
spec:
  podSelector:
    matchLabels:
      pod: a
  ingress:
    - ports:
        - port: serve-81-tcp
          protocol: TCP
"""

DENY_EGRESS_FROM_A = """
apiVersion: networking.k8s.io/v1
kind: NetworkPolicy
metadata:
  name: deny-egress-from-a
  namespace: x
spec:
  podSelector:
    matchLabels:
      pod: a
  policyTypes:
    - Egress
  egress: []
"""

ALLOW_EGRESS_IPBLOCK = """
apiVersion: networking.k8s.io/v1
kind: NetworkPolicy
metadata:
  name: allow-egress-to-y
  namespace: x
spec:
  podSelector:
    matchLabels:
      pod: a
  policyTypes:
    - Egress
  egress:
    - to:
        - ipBlock:
            cidr: 192.168.2.0/24
            except:
              - 192.168.2.3/32
"""

DENY_ALL_IN_NAMESPACE = """
apiVersion: networking.k8s.io/v1
kind: NetworkPolicy
metadata:
  name: default-deny-all
  namespace: x
spec:
  podSelector: {}
  ingress: []
"""

ALLOW_FROM_ALL_NAMESPACES = """
apiVersion: networking.k8s.io/v1
kind: NetworkPolicy
metadata:
  name: allow-from-all-namespaces
  namespace: x
spec:
  podSelector:
    matchLabels:
      pod: a
  ingress:
    - from:
        - namespaceSelector: {}
"""

ALLOW_EXTERNAL = """
apiVersion: networking.k8s.io/v1
kind: NetworkPolicy
metadata:
  name: allow-external
  namespace: x
spec:
  podSelector:
    matchLabels:
      pod: a
  ingress:
    - from:
        - ipBlock:
            cidr: 0.0.0.0/0
"""

ALLOW_PORT_5000 = """
apiVersion: networking.k8s.io/v1
kind: NetworkPolicy
metadata:
  name: allow-b-on-5000
  namespace: x
spec:
  podSelector:
    matchLabels:
      pod: a
  ingress:
    - from:
        - podSelector:
            matchLabels:
              pod: b
      ports:
        - port: 5000
          protocol: TCP
"""

ALLOW_MULTIPLE_SELECTORS = """
apiVersion: networking.k8s.io/v1
kind: NetworkPolicy
metadata:
  name: allow-b-c-or-z
  namespace: x
spec:
  podSelector:
    matchLabels:
      pod: a
  ingress:
    - from:
        - podSelector:
            matchExpressions:
              - {key: pod, operator: In, values: [b, c]}
        - namespaceSelector:
            matchLabels:
              ns: z
"""

ALLOW_DNS_EGRESS_FROM_A = """
apiVersion: networking.k8s.io/v1
kind: NetworkPolicy
metadata:
  name: allow-dns-egress
  namespace: x
spec:
  podSelector:
    matchLabels:
      pod: a
  policyTypes:
    - Egress
  egress:
    - ports:
        - port: 53
          protocol: UDP
        - port: 53
          protocol: TCP
"""

DENY_EGRESS_IN_NAMESPACE = """
apiVersion: networking.k8s.io/v1
kind: NetworkPolicy
metadata:
  name: default-deny-egress
  namespace: x
spec:
  podSelector: {}
  policyTypes:
    - Egress
"""

DENY_EXTERNAL_EGRESS = """
apiVersion: networking.k8s.io/v1
kind: NetworkPolicy
metadata:
  name: deny-external-egress
  namespace: x
spec:
  podSelector:
    matchLabels:
      pod: a
  policyTypes:
    - Egress
  egress:
    - to:
        - namespaceSelector: {}
"""

ALL_RECIPES: tuple[Recipe, ...] = (
    Recipe("deny-all", "Deny all traffic to x/a", (DENY_ALL_TO_A,)),
    Recipe("limit", "Only x/b may reach x/a", (ALLOW_B_TO_A,)),
    Recipe(
        "allow-all",
        "An empty ingress rule re-opens x/a despite a deny-all",
        (DENY_ALL_TO_A, ALLOW_ALL_TO_A),
    ),
    Recipe("same-namespace", "Pods in x only accept traffic from x", (DENY_OTHER_NAMESPACES,)),
    Recipe("from-namespace", "x/a accepts traffic from namespace y only", (ALLOW_FROM_NAMESPACE_Y,)),
    Recipe(
        "from-pod-in-namespace",
        "x/a accepts traffic from pod c in namespace z only",
        (ALLOW_C_IN_Z,),
    ),
    Recipe("named-port-80", "x/a only opens its serve-81-tcp port", (ALLOW_NAMED_PORT,)),
    Recipe(
        "named-port-81",
        "x/a only opens its serve-81-tcp port",
        (ALLOW_NAMED_PORT,),
        port=81,
    ),
    Recipe("deny-egress", "x/a cannot send anything", (DENY_EGRESS_FROM_A,)),
    Recipe(
        "egress-ipblock",
        "x/a may only reach 192.168.2.0/24 except y/c",
        (ALLOW_EGRESS_IPBLOCK,),
    ),
    Recipe("deny-all-in-namespace", "Nothing in x accepts ingress", (DENY_ALL_IN_NAMESPACE,)),
    Recipe(
        "from-all-namespaces",
        "x/a accepts traffic from pods in every namespace despite a deny-all",
        (DENY_ALL_TO_A, ALLOW_FROM_ALL_NAMESPACES),
    ),
    Recipe(
        "allow-external",
        "x/a accepts traffic from any address despite a deny-all",
        (DENY_ALL_TO_A, ALLOW_EXTERNAL),
    ),
    Recipe(
        "port-5000",
        "x/b may reach x/a on 5000/TCP only",
        (ALLOW_PORT_5000,),
        resources=_topology_with_ports(80, 5000),
        port=5000,
    ),
    Recipe(
        "multiple-selectors",
        "x/a accepts pods b and c of x, and anything in z",
        (ALLOW_MULTIPLE_SELECTORS,),
    ),
    Recipe(
        "dns-egress",
        "x/a may only send to port 53",
        (ALLOW_DNS_EGRESS_FROM_A,),
        resources=_topology_with_ports(53, 80),
        port=53,
    ),
    Recipe("deny-egress-in-namespace", "Nothing in x can send", (DENY_EGRESS_IN_NAMESPACE,)),
    Recipe(
        "deny-external-egress",
        "x/a may only send to pods inside the cluster",
        (DENY_EXTERNAL_EGRESS,),
    ),
)


def get_recipe(name: str) -> Recipe:
    for recipe in ALL_RECIPES:
        if recipe.name == name:
            return recipe
    raise KeyError(f"Unknown recipe: {name}")
