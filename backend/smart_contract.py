from pyteal import *

# Proposal box value layout, byte offsets.
DEADLINE_OFFSET = 0
CREATED_AT_OFFSET = 8
VOTE_COUNT_OFFSET = 16
ACTIVE_OFFSET = 24
CREATOR_OFFSET = 32
DESCRIPTION_HASH_OFFSET = 64
TITLE_OFFSET = 96

PROPOSAL_BOX_PREFIX = b"p"
VOTER_BOX_PREFIX = b"v"
VOTER_ADDRESS_BYTES = 20

GLOBAL_UINTS = 1
GLOBAL_BYTE_SLICES = 1


def proposal_box_name(proposal_id: int) -> bytes:
    return PROPOSAL_BOX_PREFIX + int(proposal_id).to_bytes(8, "big")


def voter_box_name(proposal_id: int, voter_address: str) -> bytes:
    return VOTER_BOX_PREFIX + int(proposal_id).to_bytes(8, "big") + bytes.fromhex(voter_address[2:])


def build_approval_program() -> Expr:
    admin_key = Bytes("admin")
    count_key = Bytes("count")

    on_create = Seq(
        App.globalPut(admin_key, Txn.sender()),
        App.globalPut(count_key, Int(0)),
        Approve(),
    )

    new_id = ScratchVar(TealType.uint64)
    new_box = ScratchVar(TealType.bytes)
    create_proposal = Seq(
        Assert(Txn.application_args.length() == Int(4)),
        Assert(Txn.sender() == App.globalGet(admin_key)),
        Assert(Len(Txn.application_args[1]) > Int(0)),
        Assert(Len(Txn.application_args[2]) == Int(32)),
        Assert(Len(Txn.application_args[3]) == Int(8)),
        new_id.store(App.globalGet(count_key) + Int(1)),
        App.globalPut(count_key, new_id.load()),
        new_box.store(Concat(Bytes(PROPOSAL_BOX_PREFIX), Itob(new_id.load()))),
        BoxPut(
            new_box.load(),
            Concat(
                Txn.application_args[3],
                Itob(Global.latest_timestamp()),
                Itob(Int(0)),
                Itob(Int(1)),
                Txn.sender(),
                Txn.application_args[2],
                Txn.application_args[1],
            ),
        ),
        Log(Itob(new_id.load())),
        Approve(),
    )

    proposal_box = ScratchVar(TealType.bytes)
    voter_box = ScratchVar(TealType.bytes)
    proposal_exists = BoxLen(proposal_box.load())
    voter_exists = BoxLen(voter_box.load())
    vote = Seq(
        Assert(Txn.application_args.length() == Int(3)),
        Assert(Txn.sender() == App.globalGet(admin_key)),
        Assert(Len(Txn.application_args[1]) == Int(8)),
        Assert(Len(Txn.application_args[2]) == Int(VOTER_ADDRESS_BYTES)),
        proposal_box.store(Concat(Bytes(PROPOSAL_BOX_PREFIX), Txn.application_args[1])),
        voter_box.store(Concat(Bytes(VOTER_BOX_PREFIX), Txn.application_args[1], Txn.application_args[2])),
        proposal_exists,
        Assert(proposal_exists.hasValue()),
        Assert(Btoi(BoxExtract(proposal_box.load(), Int(ACTIVE_OFFSET), Int(8))) == Int(1)),
        voter_exists,
        Assert(Not(voter_exists.hasValue())),
        BoxPut(voter_box.load(), Itob(Global.latest_timestamp())),
        BoxReplace(
            proposal_box.load(),
            Int(VOTE_COUNT_OFFSET),
            Itob(Btoi(BoxExtract(proposal_box.load(), Int(VOTE_COUNT_OFFSET), Int(8))) + Int(1)),
        ),
        Approve(),
    )

    return Cond(
        [Txn.application_id() == Int(0), on_create],
        [
            Txn.on_completion() == OnComplete.NoOp,
            Cond(
                [Txn.application_args[0] == Bytes("create_proposal"), create_proposal],
                [Txn.application_args[0] == Bytes("vote"), vote],
            ),
        ],
        [Txn.on_completion() == OnComplete.OptIn, Reject()],
        [Txn.on_completion() == OnComplete.CloseOut, Reject()],
        [Txn.on_completion() == OnComplete.UpdateApplication, Reject()],
        [Txn.on_completion() == OnComplete.DeleteApplication, Reject()],
    )


def build_clear_program() -> Expr:
    return Approve()


def compile_contract() -> tuple[str, str]:
    approval = compileTeal(
        build_approval_program(),
        mode=Mode.Application,
        version=8,
    )
    clear = compileTeal(
        build_clear_program(),
        mode=Mode.Application,
        version=8,
    )
    return approval, clear


if __name__ == "__main__":
    approval_teal, clear_teal = compile_contract()
    print(approval_teal)
    print(clear_teal)
