from pytest_archon import archrule


def test_core_independence() -> None:
    """
    Core must not import persistence, observability or messaging.
    It is the foundation and must remain independent.
    """
    (
        archrule("core_is_independent")
        .match("liftbus_core*")
        .should_not_import("liftbus_persistence_sqlalchemy*")
        .should_not_import("liftbus_observability*")
        .should_not_import("liftbus_messaging*")
        .check("liftbus_core")
    )


def test_observability_layering() -> None:
    """
    Observability may use core, nothing above it.
    """
    (
        archrule("observability_layering")
        .match("liftbus_observability*")
        .should_not_import("liftbus_persistence_sqlalchemy*")
        .should_not_import("liftbus_messaging*")
        .check("liftbus_observability")
    )


def test_persistence_layering() -> None:
    """
    Persistence can import from Core but not from messaging.
    """
    (
        archrule("persistence_layering")
        .match("liftbus_persistence_sqlalchemy*")
        .should_not_import("liftbus_messaging*")
        .should_not_import("liftbus_observability*")
        .check("liftbus_persistence_sqlalchemy")
    )


def test_primitives_isolation() -> None:
    """
    Primitives layer is the lowest level.
    It must not import from adapters or ports.
    """
    (
        archrule("primitives_isolation")
        .match("liftbus_core.primitives*")
        .should_not_import("liftbus_core.adapters*")
        .should_not_import("liftbus_core.ports*")
        .check("liftbus_core")
    )


def test_ports_layering() -> None:
    """
    Ports (interfaces) should not depend on Adapters (implementations).
    """
    (
        archrule("ports_layering")
        .match("liftbus_core.ports*")
        .should_not_import("liftbus_core.adapters*")
        .check("liftbus_core")
    )


def test_pipeline_is_transport_agnostic() -> None:
    """
    Envelope, retry and pipeline logic must not reach into the broker adapter
    or the database adapter; only the runtime wires them together.
    """
    (
        archrule("pipeline_transport_agnostic")
        .match("liftbus_messaging.envelope*")
        .match("liftbus_messaging.serialization*")
        .match("liftbus_messaging.headers*")
        .match("liftbus_messaging.retry*")
        .match("liftbus_messaging.handlers*")
        .match("liftbus_messaging.pipeline*")
        .should_not_import("liftbus_messaging.rabbitmq*")
        .should_not_import("liftbus_persistence_sqlalchemy*")
        .check("liftbus_messaging")
    )
