import base64

from algosdk import account, logic, mnemonic, transaction
from algosdk.v2client import algod

from settings import SETTINGS, Settings
from smart_contract import GLOBAL_BYTE_SLICES, GLOBAL_UINTS, compile_contract


def deploy(settings: Settings = SETTINGS) -> dict[str, int | str]:
    if not settings.algod_address or not settings.service_mnemonic:
        raise RuntimeError("ALGORAND_ALGOD_ADDRESS and ALGORAND_SERVICE_MNEMONIC are required")

    headers = {"X-API-Key": settings.algod_token} if settings.algod_token else {}
    client = algod.AlgodClient(settings.algod_token, settings.algod_address, headers=headers)
    private_key = mnemonic.to_private_key(settings.service_mnemonic)
    sender = account.address_from_private_key(private_key)

    approval_teal, clear_teal = compile_contract()
    approval_program = base64.b64decode(client.compile(approval_teal)["result"])
    clear_program = base64.b64decode(client.compile(clear_teal)["result"])

    txn = transaction.ApplicationCreateTxn(
        sender=sender,
        sp=client.suggested_params(),
        on_complete=transaction.OnComplete.NoOpOC,
        approval_program=approval_program,
        clear_program=clear_program,
        global_schema=transaction.StateSchema(num_uints=GLOBAL_UINTS, num_byte_slices=GLOBAL_BYTE_SLICES),
        local_schema=transaction.StateSchema(0, 0),
    )
    txid = client.send_transaction(txn.sign(private_key))
    print("txid:", txid)

    last_round = client.status()["last-round"]
    while True:
        pending = client.pending_transaction_info(txid)
        if pending.get("confirmed-round", 0) > 0:
            break
        last_round += 1
        client.status_after_block(last_round)

    app_id = int(pending["application-index"])
    return {
        "txid": txid,
        "confirmed_round": int(pending["confirmed-round"]),
        "app_id": app_id,
        # Box storage is paid from the application account; fund it before use.
        "app_address": logic.get_application_address(app_id),
    }


if __name__ == "__main__":
    result = deploy()
    print("confirmed_round:", result["confirmed_round"])
    print("app_id:", result["app_id"])
    print("app_address:", result["app_address"])
