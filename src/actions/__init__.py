"""Reusable cluster bootstrap actions."""

from actions.minikube import MinikubeDeleteAction, MinikubeStartAction
from actions.istio import IstioInstallAction
from actions.argocd import ArgoCDInstallAction
from actions.helm import HelmCreateAction

__all__ = [
    'MinikubeDeleteAction',
    'MinikubeStartAction',
    'IstioInstallAction',
    'ArgoCDInstallAction',
    'HelmCreateAction',
]
