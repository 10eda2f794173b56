from provisioner.modules.reconcile.domain.factory import ResourceKindRegistry

# Import all kind modules to trigger registration
import provisioner.modules.reconcile.domain.kinds.datafactory  # noqa
import provisioner.modules.reconcile.domain.kinds.iothub  # noqa

__all__ = ["ResourceKindRegistry"]
