import hashlib

import pytest

from shroud.errors import AlreadyInitialized, DefinitionNotReady
from shroud.ledger.definitions import comp_def_offset
from shroud.ledger.types import ComputationKind, DefinitionStatus
from shroud.mpc.cluster import LocalCluster


def test_lifecycle_with_raw_circuit(bare_program):
    kind = ComputationKind.WRAP
    assert bare_program.definitions.status(kind) == DefinitionStatus.UNINITIALIZED
    assert bare_program.definitions.get(kind) is None

    handle = bare_program.init_comp_def(kind)
    assert handle.status == DefinitionStatus.INITIALIZED
    assert handle.comp_def_offset == comp_def_offset(kind)

    handle = bare_program.finalize_comp_def(kind, circuit=b"\x00circuit-bytes")
    assert handle.status == DefinitionStatus.FINALIZED
    assert handle.source == "raw"
    assert handle.circuit_hash == hashlib.sha256(b"\x00circuit-bytes").hexdigest()


def test_init_twice_rejected(bare_program):
    bare_program.init_comp_def("transfer")
    with pytest.raises(AlreadyInitialized):
        bare_program.init_comp_def("transfer")


def test_finalize_twice_rejected(bare_program):
    bare_program.init_comp_def("wrap")
    bare_program.finalize_comp_def("wrap")
    with pytest.raises(AlreadyInitialized):
        bare_program.finalize_comp_def("wrap")


def test_finalize_before_init_rejected(bare_program):
    with pytest.raises(DefinitionNotReady):
        bare_program.finalize_comp_def("wrap")


def test_empty_raw_upload_rejected(bare_program):
    bare_program.init_comp_def("wrap")
    with pytest.raises(ValueError):
        bare_program.finalize_comp_def("wrap", circuit=b"")
    assert bare_program.definitions.status("wrap") == DefinitionStatus.INITIALIZED


def test_offchain_source_needs_cluster_ack(settings, token_ledger):
    from shroud.ledger.program import ConfidentialTokenProgram

    prog = ConfidentialTokenProgram(settings, LocalCluster(offchain_circuits=["wrap"]), token_ledger)
    try:
        prog.init_comp_def("wrap")
        prog.init_comp_def("transfer")
        assert prog.finalize_comp_def("wrap", offchain_source=True).source == "offchain"
        with pytest.raises(DefinitionNotReady):
            prog.finalize_comp_def("transfer", offchain_source=True)
        assert prog.definitions.status("transfer") == DefinitionStatus.INITIALIZED
    finally:
        prog.close()


def test_setup_definitions_is_repeatable(bare_program):
    bare_program.init_comp_def("wrap")
    handles = bare_program.setup_definitions()
    assert {h.kind for h in handles} == set(ComputationKind)
    assert all(h.status == DefinitionStatus.FINALIZED for h in handles)
    assert bare_program.setup_definitions() == handles


def test_comp_def_offset_is_a_stable_u32():
    assert comp_def_offset("wrap") == comp_def_offset(ComputationKind.WRAP)
    assert comp_def_offset("wrap") != comp_def_offset("transfer")
    assert 0 <= comp_def_offset("transfer") < 2**32


def test_queue_before_finalize_rejected(bare_program, make_wallet):
    alice = make_wallet("alice", 100)
    bare_program.init_comp_def("wrap")
    with pytest.raises(DefinitionNotReady):
        alice.wrap(bare_program, 10)
    assert bare_program.token_ledger.balance_of("alice") == 100


def test_definition_events_recorded(bare_program):
    bare_program.setup_definitions()
    kinds = [e["kind"] for e in bare_program.events()]
    assert kinds.count("DefinitionInitialized") == 2
    assert kinds.count("DefinitionFinalized") == 2


def test_definition_events_name_the_definition(bare_program):
    bare_program.setup_definitions()
    initialized = bare_program.events(kind="DefinitionInitialized")
    assert sorted(e["definition_kind"] for e in initialized) == ["transfer", "wrap"]
    assert all(e["comp_def_offset"] == comp_def_offset(e["definition_kind"]) for e in initialized)
    finalized = bare_program.events(kind="DefinitionFinalized")
    assert [e["source"] for e in finalized] == ["cluster", "cluster"]
