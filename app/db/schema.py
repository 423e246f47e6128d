from __future__ import annotations


def ensure_schema(conn) -> None:
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS tickets (
            id serial PRIMARY KEY,
            number int NOT NULL UNIQUE CHECK (number > 0),
            state text NOT NULL DEFAULT 'available'
                CHECK (state IN ('available', 'reserved', 'sold')),
            buyer_name varchar(255),
            buyer_email varchar(255),
            buyer_phone varchar(50),
            reservation_id uuid,
            payment_reference varchar(255),
            amount_charged int,
            reserved_at timestamptz,
            sold_at timestamptz,
            created_at timestamptz NOT NULL DEFAULT now(),
            CONSTRAINT tickets_sold_amount_matches_number
                CHECK (state <> 'sold' OR amount_charged = number),
            CONSTRAINT tickets_available_is_blank
                CHECK (
                    state <> 'available' OR (
                        buyer_name IS NULL AND buyer_email IS NULL AND buyer_phone IS NULL
                        AND reservation_id IS NULL AND payment_reference IS NULL
                        AND amount_charged IS NULL AND reserved_at IS NULL AND sold_at IS NULL
                    )
                )
        );
        """
    )
    cur.execute("CREATE INDEX IF NOT EXISTS tickets_state_idx ON tickets (state);")
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS blocked_clients (
            id serial PRIMARY KEY,
            client_id varchar(64) NOT NULL UNIQUE,
            reason text,
            failed_attempts int NOT NULL DEFAULT 0,
            blocked_at timestamptz NOT NULL DEFAULT now(),
            expires_at timestamptz,
            is_active boolean NOT NULL DEFAULT true
        );
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS failed_payment_attempts (
            id serial PRIMARY KEY,
            client_id varchar(64) NOT NULL,
            card_last_four varchar(4),
            decline_reason text,
            attempted_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )
    cur.execute(
        """
        CREATE INDEX IF NOT EXISTS failed_payment_attempts_client_idx
        ON failed_payment_attempts (client_id, attempted_at);
        """
    )
    conn.commit()
    cur.close()
